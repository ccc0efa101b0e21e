# -*- coding: utf-8 -*-
"""
Spatial summaries of point patterns.

Includes:
- Intensity (points per unit area)
- Edge-corrected Gaussian kernel density fields
- Per-sample summary tables
- Visualization
"""

from ppa.analysis.summaries import (
    Smoother,
    GaussianSmoother,
    compute_intensity,
    scott_bandwidth,
    compute_density_field,
    field_roughness,
    add_intensity_column,
    add_density_column,
    summarize_patterns,
    summarize_by_group
)

__all__ = [
    'Smoother',
    'GaussianSmoother',
    'compute_intensity',
    'scott_bandwidth',
    'compute_density_field',
    'field_roughness',
    'add_intensity_column',
    'add_density_column',
    'summarize_patterns',
    'summarize_by_group'
]
