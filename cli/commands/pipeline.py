"""Full pipeline execution"""
import logging
import os
import time
from pathlib import Path
from typing import List, Dict, Any, Optional

from cli.commands.models import run_cross_pattern_model, run_group_model
from cli.commands.summarize import compute_summaries, run_summaries
from cli.config import build_analysis_config
from cli.state import PipelineState
from ppa.data.loader import load_collection

logger = logging.getLogger(__name__)


def _outputs_since(directory: str, start_time: float) -> List[str]:
    """Files under a directory written since a step started"""
    outputs = []
    for root, _, files in os.walk(directory):
        for name in files:
            path = os.path.join(root, name)
            if os.path.getmtime(path) >= start_time:
                outputs.append(path)
    return sorted(outputs)


def run_full_pipeline(
    config: Dict[str, Any], 
    steps: List[str] = None,
    state: Optional[PipelineState] = None,
    resume: bool = False
):
    """Run the full analysis pipeline
    
    The dataset is loaded once and shared by all steps. A failed step is
    recorded in the state file and halts the pipeline.
    
    Args:
        config: Configuration dictionary
        steps: List of steps to run (default: all)
        state: Pipeline state manager for tracking progress
        resume: Whether we're resuming from a previous run
    """
    if steps is None:
        steps = list(PipelineState.STEPS)
    
    logger.info(f"=" * 60)
    logger.info(f"Starting Point Pattern Analysis Pipeline")
    logger.info(f"Dataset: {config.get('dataset_name', 'unknown')}")
    logger.info(f"Steps: {', '.join(steps)}")
    if resume:
        logger.info(f"Mode: RESUME (skipping completed steps)")
    logger.info(f"=" * 60)
    
    output_dir = config['output_dir']
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    analysis_config = build_analysis_config(config)
    summary_config = config.get('summaries') or {}
    pattern_columns = summary_config.get('pattern_columns')
    generate_plots = summary_config.get('generate_plots', True)
    
    # Create state manager if not provided
    if state is None:
        from cli.state import get_state
        state = get_state(output_dir)
    
    collection = None
    n_steps = len(PipelineState.STEPS)
    
    # Step 1: Spatial summaries
    if 'summarize' in steps:
        logger.info("\n" + "=" * 40)
        logger.info(f"Step 1/{n_steps}: Computing spatial summaries")
        logger.info("=" * 40)
        
        summary_dir = os.path.join(output_dir, 'summaries')
        started = time.time()
        try:
            state.start_step('summarize')
            collection = run_summaries(
                dataset_dir=config['input_dir'],
                output_dir=summary_dir,
                config=analysis_config,
                pattern_columns=pattern_columns,
                group_cols=summary_config.get('group_cols'),
                generate_plots=generate_plots
            )
            state.complete_step('summarize', _outputs_since(summary_dir, started))
        except Exception as e:
            state.fail_step('summarize', str(e))
            raise
    
    if collection is None and any(step in steps for step in ('group_model', 'cross_model')):
        collection = load_collection(config['input_dir'], pattern_columns=pattern_columns)
        compute_summaries(collection, analysis_config, pattern_columns)
    
    models_dir = os.path.join(output_dir, 'models')
    
    # Step 2: Group-level model
    if 'group_model' in steps:
        logger.info("\n" + "=" * 40)
        logger.info(f"Step 2/{n_steps}: Fitting group-level model")
        logger.info("=" * 40)
        
        group_config = config.get('group_model') or {}
        if not group_config.get('enabled', True):
            logger.info("Group-level model disabled in config, skipping")
        else:
            started = time.time()
            try:
                state.start_step('group_model')
                run_group_model(
                    collection,
                    output_dir=models_dir,
                    response_pattern=group_config['response_pattern'],
                    covariates=group_config.get('covariates') or [],
                    variance_covariates=group_config.get('variance_covariates') or [],
                    config=analysis_config,
                    fitter=group_config.get('fitter') or 'location_scale',
                    generate_plots=generate_plots
                )
                state.complete_step('group_model', _outputs_since(models_dir, started))
            except Exception as e:
                state.fail_step('group_model', str(e))
                raise
    
    # Step 3: Cross-pattern model
    if 'cross_model' in steps:
        logger.info("\n" + "=" * 40)
        logger.info(f"Step 3/{n_steps}: Fitting cross-pattern model")
        logger.info("=" * 40)
        
        cross_config = config.get('cross_pattern_model') or {}
        if not cross_config.get('enabled', True):
            logger.info("Cross-pattern model disabled in config, skipping")
        else:
            started = time.time()
            try:
                state.start_step('cross_model')
                run_cross_pattern_model(
                    collection,
                    output_dir=models_dir,
                    response_pattern=cross_config['response_pattern'],
                    covariate_pattern=cross_config['covariate_pattern'],
                    sample_covariates=cross_config.get('sample_covariates') or [],
                    config=analysis_config,
                    fitter=cross_config.get('fitter') or 'poisson_glm',
                    standardize=cross_config.get('standardize', False),
                    generate_plots=generate_plots
                )
                state.complete_step('cross_model', _outputs_since(models_dir, started))
            except Exception as e:
                state.fail_step('cross_model', str(e))
                raise
    
    logger.info("\n" + "=" * 60)
    logger.info("Pipeline completed successfully!")
    logger.info(f"Results saved to: {output_dir}")
    logger.info("=" * 60)
    
    # Save final state
    state.save()
