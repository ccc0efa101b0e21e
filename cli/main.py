#!/usr/bin/env python
"""
Point Pattern Analysis CLI
Main entry point for the command-line interface
"""
import argparse
import sys
import logging

from cli.commands.simulate import simulate_dataset
from cli.commands.summarize import run_summaries
from cli.commands.models import run_group_model, run_cross_pattern_model
from cli.commands.pipeline import run_full_pipeline
from cli.config import load_config, save_config, get_default_config
from cli.state import PipelineState, get_state
from ppa.config import CACHE_POLICIES, MISSING_POLICIES, AnalysisConfig
from ppa.data.loader import load_collection
from ppa.models.registry import list_available_fitters

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def create_parser():
    """Create the main argument parser"""
    parser = argparse.ArgumentParser(
        prog='ppa',
        description="Point Pattern Analysis of Cell Distributions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate default config file
  ppa init --name my_dataset --output configs/my_config.yaml
  
  # Write a synthetic dataset
  ppa simulate --output data/sim --groups dpi0:0.001 dpi7:0.002 --response-effect 0.3
  
  # Run full pipeline with config file
  ppa pipeline --config configs/my_config.yaml
  
  # Run specific steps only
  ppa pipeline --config configs/my_config.yaml --steps group_model cross_model
  
  # Run individual commands
  ppa summarize --input data/sim --output results/sim/summaries --group-cols group
  ppa fit-group --input data/sim --output results/sim/models --response microglia --covariates group --variance-covariates group
  ppa fit-cross --input data/sim --output results/sim/models --response microglia --covariate neuron
        """
    )
    
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    
    subparsers = parser.add_subparsers(dest='command', help='Pipeline commands')
    
    # Init command - generate config file
    init_parser = subparsers.add_parser('init', help='Generate default configuration file')
    init_parser.add_argument(
        '--name', '-n',
        type=str,
        default='dataset1',
        help='Dataset name (default: dataset1)'
    )
    init_parser.add_argument(
        '--output', '-o',
        type=str,
        default='configs/config.yaml',
        help='Output path for config file'
    )
    
    # Full pipeline command
    pipeline_parser = subparsers.add_parser('pipeline', help='Run full pipeline')
    pipeline_parser.add_argument(
        '--config', '-c',
        type=str,
        required=True,
        help='Path to configuration YAML file'
    )
    pipeline_parser.add_argument(
        '--steps',
        nargs='+',
        choices=PipelineState.STEPS,
        help='Specific steps to run (default: all)'
    )
    pipeline_parser.add_argument(
        '--output-dir',
        type=str,
        help='Override output directory from config'
    )
    pipeline_parser.add_argument(
        '--resume',
        action='store_true',
        help='Resume from last interrupted state (skips completed steps)'
    )
    pipeline_parser.add_argument(
        '--reset',
        action='store_true',
        help='Reset pipeline state and start fresh (use with --resume to clear state)'
    )
    pipeline_parser.add_argument(
        '--status',
        action='store_true',
        help='Show pipeline progress status and exit'
    )
    
    # Simulate command
    simulate_parser = subparsers.add_parser('simulate', help='Write a synthetic two-cell-type dataset')
    simulate_parser.add_argument(
        '--output', '-o',
        type=str,
        required=True,
        help='Output dataset directory'
    )
    simulate_parser.add_argument(
        '--groups',
        nargs='+',
        type=str,
        default=['control:0.001', 'treated:0.002'],
        help='Response intensity per group as name:intensity pairs (default: control:0.001 treated:0.002)'
    )
    simulate_parser.add_argument(
        '--samples-per-group',
        type=int,
        default=5,
        help='Number of samples per group (default: 5)'
    )
    simulate_parser.add_argument(
        '--covariate-intensity',
        type=float,
        default=0.002,
        help='Intensity of the covariate cell type (default: 0.002)'
    )
    simulate_parser.add_argument(
        '--response-effect',
        type=float,
        default=0.0,
        help='Log-intensity effect of standardised covariate density (default: 0.0)'
    )
    simulate_parser.add_argument(
        '--window-size',
        type=float,
        default=1000.0,
        help='Side length of the square observation window (default: 1000)'
    )
    simulate_parser.add_argument(
        '--seed',
        type=int,
        default=42,
        help='Random seed for reproducibility (default: 42)'
    )
    
    # Summarize command
    summarize_parser = subparsers.add_parser('summarize', help='Compute intensities and density fields')
    _add_dataset_arguments(summarize_parser)
    _add_density_arguments(summarize_parser)
    summarize_parser.add_argument(
        '--patterns',
        nargs='+',
        type=str,
        help='Cell types to summarise (default: all)'
    )
    summarize_parser.add_argument(
        '--group-cols',
        nargs='+',
        type=str,
        help='Sample metadata columns for group summaries and plots'
    )
    summarize_parser.add_argument(
        '--no-plots',
        action='store_true',
        help='Skip generating visualization plots'
    )
    
    # Fit-group command
    group_parser = subparsers.add_parser('fit-group', help='Fit the group-level model of cell intensity')
    _add_dataset_arguments(group_parser)
    _add_model_arguments(group_parser)
    group_parser.add_argument(
        '--response', '-r',
        type=str,
        required=True,
        help='Cell type whose intensity is the response'
    )
    group_parser.add_argument(
        '--covariates',
        nargs='+',
        type=str,
        default=[],
        help='Sample metadata columns for the mean'
    )
    group_parser.add_argument(
        '--variance-covariates',
        nargs='+',
        type=str,
        default=[],
        help='Sample metadata columns for the residual scale'
    )
    group_parser.add_argument(
        '--fitter',
        type=str,
        default='location_scale',
        help=f"Regression fitter (default: location_scale). Available: {', '.join(list_available_fitters())}"
    )
    
    # Fit-cross command
    cross_parser = subparsers.add_parser('fit-cross', help='Fit the cross-pattern point process model')
    _add_dataset_arguments(cross_parser)
    _add_density_arguments(cross_parser)
    _add_model_arguments(cross_parser)
    cross_parser.add_argument(
        '--response', '-r',
        type=str,
        required=True,
        help='Cell type whose intensity is modelled'
    )
    cross_parser.add_argument(
        '--covariate',
        type=str,
        required=True,
        help='Cell type whose density is the covariate'
    )
    cross_parser.add_argument(
        '--sample-covariates',
        nargs='+',
        type=str,
        default=[],
        help='Sample metadata columns entering as intercept shifts'
    )
    cross_parser.add_argument(
        '--standardize',
        action='store_true',
        help='Report the effect per standard deviation of covariate density'
    )
    cross_parser.add_argument(
        '--fitter',
        type=str,
        default='poisson_glm',
        help='Point process fitter (default: poisson_glm)'
    )
    
    return parser


def _add_dataset_arguments(subparser):
    subparser.add_argument(
        '--input', '-i',
        type=str,
        required=True,
        help='Dataset directory with samples.csv and points.csv'
    )
    subparser.add_argument(
        '--output', '-o',
        type=str,
        required=True,
        help='Output directory for results'
    )


def _add_density_arguments(subparser):
    subparser.add_argument(
        '--bandwidth',
        type=str,
        default='scott',
        help="Kernel bandwidth in coordinate units, or 'scott' (default: scott)"
    )
    subparser.add_argument(
        '--resolution',
        type=int,
        default=128,
        help='Density grid cells per window side (default: 128)'
    )
    subparser.add_argument(
        '--no-edge-correction',
        action='store_true',
        help='Disable border correction of density fields'
    )


def _add_model_arguments(subparser):
    subparser.add_argument(
        '--confidence-level',
        type=float,
        default=0.95,
        help='Coverage of reported intervals (default: 0.95)'
    )
    subparser.add_argument(
        '--missing',
        choices=MISSING_POLICIES,
        default='raise',
        help='Missing covariate policy (default: raise)'
    )
    subparser.add_argument(
        '--cache-dir',
        type=str,
        help='Directory for persisted models (default: no persistence)'
    )
    subparser.add_argument(
        '--cache-policy',
        choices=CACHE_POLICIES,
        default='always_refit',
        help='Reuse persisted models (never_refit) or refit (always_refit, default)'
    )
    subparser.add_argument(
        '--no-plots',
        action='store_true',
        help='Skip generating visualization plots'
    )


def parse_groups(group_args):
    """Parse group arguments from command line
    
    Args:
        group_args: List of 'name:intensity' strings
        
    Returns:
        Dictionary mapping group names to response intensities
    """
    groups = {}
    for group in group_args:
        if ':' in group:
            name, intensity = group.rsplit(':', 1)
            groups[name] = float(intensity)
        else:
            raise ValueError(f"Invalid group format: {group}. Use 'name:intensity' format.")
    return groups


def build_cli_config(args) -> AnalysisConfig:
    """Analysis configuration from the options present on a subcommand"""
    values = {}
    for option, key in (
        ('bandwidth', 'bandwidth'),
        ('resolution', 'resolution'),
        ('confidence_level', 'confidence_level'),
        ('missing', 'missing'),
        ('cache_dir', 'cache_dir'),
        ('cache_policy', 'model_cache_policy')
    ):
        if hasattr(args, option):
            values[key] = getattr(args, option)
    if getattr(args, 'no_edge_correction', False):
        values['edge_correction'] = False
    return AnalysisConfig.from_dict(values)


def main():
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args()
    
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    
    if not args.command:
        parser.print_help()
        sys.exit(1)
    
    try:
        if args.command == 'init':
            logger.info(f"Generating default config for '{args.name}'...")
            config = get_default_config(args.name)
            save_config(config, args.output)
            logger.info(f"Config saved to: {args.output}")
        
        elif args.command == 'pipeline':
            config = load_config(args.config)
            if args.output_dir:
                config['output_dir'] = args.output_dir
            
            output_dir = config['output_dir']
            state = get_state(output_dir)
            
            # Handle --status flag
            if args.status:
                print(state.get_progress_summary())
                sys.exit(0)
            
            # Handle --reset flag
            if args.reset:
                state.reset()
                logger.info("Pipeline state has been reset")
                if not args.resume:
                    # Just reset and exit if not also resuming
                    print("Pipeline state reset. Run again without --reset to start fresh.")
                    sys.exit(0)
            
            steps = args.steps if args.steps else list(PipelineState.STEPS)
            
            # Handle --resume flag
            if args.resume:
                logger.info("Resume mode enabled - checking for previous progress...")
                print(state.get_progress_summary())
                resume_steps = state.get_resume_steps(steps)
                if not resume_steps:
                    logger.info("All requested steps are already completed!")
                    print("\nAll requested steps are already completed. Use --reset to start fresh.")
                    sys.exit(0)
                logger.info(f"Resuming with steps: {', '.join(resume_steps)}")
                steps = resume_steps
            
            run_full_pipeline(config, steps, state=state, resume=args.resume)
        
        elif args.command == 'simulate':
            simulate_dataset(
                output_dir=args.output,
                group_intensities=parse_groups(args.groups),
                samples_per_group=args.samples_per_group,
                covariate_intensity=args.covariate_intensity,
                response_effect=args.response_effect,
                window_size=args.window_size,
                seed=args.seed
            )
        
        elif args.command == 'summarize':
            run_summaries(
                dataset_dir=args.input,
                output_dir=args.output,
                config=build_cli_config(args),
                pattern_columns=args.patterns,
                group_cols=args.group_cols,
                generate_plots=not args.no_plots
            )
        
        elif args.command == 'fit-group':
            collection = load_collection(args.input)
            run_group_model(
                collection,
                output_dir=args.output,
                response_pattern=args.response,
                covariates=args.covariates,
                variance_covariates=args.variance_covariates,
                config=build_cli_config(args),
                fitter=args.fitter,
                generate_plots=not args.no_plots
            )
        
        elif args.command == 'fit-cross':
            collection = load_collection(args.input)
            run_cross_pattern_model(
                collection,
                output_dir=args.output,
                response_pattern=args.response,
                covariate_pattern=args.covariate,
                sample_covariates=args.sample_covariates,
                config=build_cli_config(args),
                fitter=args.fitter,
                standardize=args.standardize,
                generate_plots=not args.no_plots
            )
        
        print(f"\n[OK] {args.command} completed successfully")
        
    except Exception as e:
        print(f"\n[ERROR] {args.command}: {str(e)}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
