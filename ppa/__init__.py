# -*- coding: utf-8 -*-
"""
Point pattern analysis of cell distributions in tissue sections.

Provides:
- Sample collections of point patterns, scalar summaries and density fields
- Intensity and kernel density summaries with edge correction
- Group-level location-scale model of per-sample summaries
- Cross-pattern log-linear point process regression
- Model persistence with a refit policy

Usage:
    from ppa import load_collection, add_intensity_column, fit_group_model
    collection = load_collection('data/dataset1')
    column = add_intensity_column(collection, 'microglia')
    model = fit_group_model(collection, column, ['dpi'], variance_covariates=['dpi'])
"""

from ppa.config import AnalysisConfig
from ppa.exceptions import (
    PPAError,
    LoadError,
    InvalidBandwidthError,
    InsufficientDataError,
    ConvergenceError,
    WindowError,
    MissingDataError,
    ColumnError
)
from ppa.data import (
    Window,
    PointPattern,
    DensityField,
    ColumnKind,
    SampleCollection,
    load_collection,
    save_collection
)
from ppa.analysis import (
    compute_intensity,
    compute_density_field,
    add_intensity_column,
    add_density_column,
    summarize_patterns
)
from ppa.models import (
    FittedModel,
    ModelStore,
    fit_group_model,
    fit_cross_pattern_model,
    get_fitter,
    list_available_fitters
)

__version__ = "0.1.0"

__all__ = [
    'AnalysisConfig',
    # Errors
    'PPAError',
    'LoadError',
    'InvalidBandwidthError',
    'InsufficientDataError',
    'ConvergenceError',
    'WindowError',
    'MissingDataError',
    'ColumnError',
    # Data
    'Window',
    'PointPattern',
    'DensityField',
    'ColumnKind',
    'SampleCollection',
    'load_collection',
    'save_collection',
    # Summaries
    'compute_intensity',
    'compute_density_field',
    'add_intensity_column',
    'add_density_column',
    'summarize_patterns',
    # Models
    'FittedModel',
    'ModelStore',
    'fit_group_model',
    'fit_cross_pattern_model',
    'get_fitter',
    'list_available_fitters'
]
