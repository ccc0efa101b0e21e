# -*- coding: utf-8 -*-
"""
Data model and I/O for sample collections.

Includes:
- Observation windows and point patterns
- Gridded density fields
- Sample collections with typed, append-only columns
- CSV dataset loader and writer
- Point process simulation
"""

from ppa.data.patterns import Window, PointPattern
from ppa.data.fields import DensityField
from ppa.data.collection import ColumnKind, SampleCollection
from ppa.data.loader import load_collection, save_collection
from ppa.data.simulate import (
    simulate_poisson_pattern,
    simulate_inhomogeneous_pattern,
    simulate_collection
)

__all__ = [
    'Window',
    'PointPattern',
    'DensityField',
    'ColumnKind',
    'SampleCollection',
    'load_collection',
    'save_collection',
    'simulate_poisson_pattern',
    'simulate_inhomogeneous_pattern',
    'simulate_collection'
]
