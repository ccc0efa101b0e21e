"""CLI Commands Package

Available commands:
- simulate: Write a synthetic dataset
- summarize: Compute intensities and density fields
- models: Fit the group-level and cross-pattern models
- pipeline: Run full pipeline
"""

from cli.commands.simulate import simulate_dataset
from cli.commands.summarize import run_summaries
from cli.commands.models import run_group_model, run_cross_pattern_model

__all__ = [
    'simulate_dataset',
    'run_summaries',
    'run_group_model',
    'run_cross_pattern_model'
]
