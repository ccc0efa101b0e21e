"""Configuration loading and validation"""
import yaml
from pathlib import Path
from typing import Dict, Any

from ppa.config import AnalysisConfig


def load_config(config_path: str) -> Dict[str, Any]:
    """Load configuration from YAML file
    
    Args:
        config_path: Path to YAML configuration file
        
    Returns:
        Dictionary containing configuration
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}
    
    # Validate required fields
    required_fields = ['dataset_name', 'input_dir', 'output_dir']
    for field in required_fields:
        if field not in config:
            raise ValueError(f"Missing required config field: {field}")
    
    # Fail early on invalid analysis parameters
    build_analysis_config(config)
    
    return config


def save_config(config: Dict[str, Any], output_path: str):
    """Save configuration to YAML file
    
    Args:
        config: Configuration dictionary
        output_path: Path to save configuration
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    
    with open(output_path, 'w') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def build_analysis_config(config: Dict[str, Any]) -> AnalysisConfig:
    """Merge the summaries and analysis sections into an AnalysisConfig
    
    Args:
        config: Configuration dictionary
        
    Returns:
        Validated AnalysisConfig
    """
    merged = dict(config.get('summaries') or {})
    merged.update(config.get('analysis') or {})
    return AnalysisConfig.from_dict(merged)


def get_default_config(dataset_name: str = "dataset1") -> Dict[str, Any]:
    """Get default configuration template
    
    Args:
        dataset_name: Name of the dataset
        
    Returns:
        Default configuration dictionary
    """
    defaults = AnalysisConfig()
    return {
        'dataset_name': dataset_name,
        'input_dir': f'data/{dataset_name}',
        'output_dir': f'results/{dataset_name}',
        'summaries': {
            'pattern_columns': None,
            'group_cols': ['group'],
            'bandwidth': defaults.bandwidth,
            'resolution': defaults.resolution,
            'edge_correction': defaults.edge_correction,
            'generate_plots': True
        },
        'group_model': {
            'enabled': True,
            'response_pattern': 'microglia',
            'covariates': ['group'],
            'variance_covariates': ['group'],
            'fitter': 'location_scale'
        },
        'cross_pattern_model': {
            'enabled': True,
            'response_pattern': 'microglia',
            'covariate_pattern': 'neuron',
            'sample_covariates': [],
            'fitter': 'poisson_glm',
            'standardize': False
        },
        'analysis': {
            'confidence_level': defaults.confidence_level,
            'model_cache_policy': defaults.model_cache_policy,
            'cache_dir': f'results/{dataset_name}/models',
            'missing': defaults.missing,
            'max_iter': defaults.max_iter,
            'tol': defaults.tol
        }
    }
