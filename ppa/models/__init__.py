# -*- coding: utf-8 -*-
"""
Statistical models over sample collections.

Provides:
- Fitter registry (location-scale, OLS, Poisson GLM)
- Group-level model of per-sample summaries
- Cross-pattern point process regression
- Model store with never_refit / always_refit policies
"""

from ppa.models.base import FitResult, FittedModel
from ppa.models.registry import (
    RegressionFitter,
    PointProcessFitter,
    LocationScaleFitter,
    OLSFitter,
    PoissonGLMFitter,
    FITTER_REGISTRY,
    get_fitter,
    list_available_fitters
)
from ppa.models.store import ModelStore, NEVER_REFIT, ALWAYS_REFIT
from ppa.models.group import fit_group_model
from ppa.models.cross_pattern import build_quadrature, fit_cross_pattern_model

__all__ = [
    'FitResult',
    'FittedModel',
    # Fitter registry
    'RegressionFitter',
    'PointProcessFitter',
    'LocationScaleFitter',
    'OLSFitter',
    'PoissonGLMFitter',
    'FITTER_REGISTRY',
    'get_fitter',
    'list_available_fitters',
    # Persistence
    'ModelStore',
    'NEVER_REFIT',
    'ALWAYS_REFIT',
    # Models
    'fit_group_model',
    'build_quadrature',
    'fit_cross_pattern_model'
]
