# -*- coding: utf-8 -*-
"""
Observation windows and point patterns.

A point pattern is the set of detected cell centres of one cell type in one
tissue sample, recorded inside a rectangular observation window. The window
defines the denominator for intensity and the support of density fields.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ppa.exceptions import MissingDataError, WindowError


@dataclass(frozen=True)
class Window:
    """Axis-aligned rectangular observation window."""

    xmin: float
    xmax: float
    ymin: float
    ymax: float

    def __post_init__(self):
        bounds = (self.xmin, self.xmax, self.ymin, self.ymax)
        if not np.all(np.isfinite(bounds)):
            raise WindowError(f"Window bounds must be finite, got {bounds}")
        if self.xmax <= self.xmin or self.ymax <= self.ymin:
            raise WindowError(
                f"Degenerate window: x=[{self.xmin}, {self.xmax}], y=[{self.ymin}, {self.ymax}]"
            )

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        """Bounds as (xmin, xmax, ymin, ymax), the order matplotlib expects."""
        return (self.xmin, self.xmax, self.ymin, self.ymax)

    def contains(self, coords: np.ndarray) -> np.ndarray:
        """Boolean mask of the rows of an (n, 2) array lying inside the window (boundary inclusive)."""
        coords = np.asarray(coords, dtype=float).reshape(-1, 2)
        return (
            (coords[:, 0] >= self.xmin) & (coords[:, 0] <= self.xmax)
            & (coords[:, 1] >= self.ymin) & (coords[:, 1] <= self.ymax)
        )


@dataclass(frozen=True, eq=False)
class PointPattern:
    """Finite set of 2D locations confined to an observation window.

    Args:
        coords: Array of shape (n, 2) with x, y coordinates
        window: Observation window every point must lie in
        label: Optional cell type label

    Raises:
        MissingDataError: If any coordinate is NaN
        WindowError: If any point lies outside the window
    """

    coords: np.ndarray
    window: Window
    label: Optional[str] = None

    def __post_init__(self):
        coords = np.array(self.coords, dtype=float)
        if coords.size == 0:
            coords = np.empty((0, 2), dtype=float)
        if coords.ndim != 2 or coords.shape[1] != 2:
            raise ValueError(f"Coordinates must have shape (n, 2), got {coords.shape}")
        if np.isnan(coords).any():
            raise MissingDataError(
                f"Point pattern '{self.label}' has {int(np.isnan(coords).any(axis=1).sum())} points with missing coordinates"
            )
        outside = ~self.window.contains(coords)
        if outside.any():
            raise WindowError(
                f"{int(outside.sum())} points of pattern '{self.label}' lie outside the observation window"
            )
        coords.setflags(write=False)
        object.__setattr__(self, 'coords', coords)

    @property
    def n_points(self) -> int:
        return self.coords.shape[0]

    def __len__(self) -> int:
        return self.n_points

    @property
    def x(self) -> np.ndarray:
        return self.coords[:, 0]

    @property
    def y(self) -> np.ndarray:
        return self.coords[:, 1]

    def with_label(self, label: str) -> 'PointPattern':
        return PointPattern(self.coords, self.window, label)
