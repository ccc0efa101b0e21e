"""Gridded density fields derived from point patterns"""
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ppa.data.patterns import Window


@dataclass(frozen=True, eq=False)
class DensityField:
    """Estimated local intensity on a regular grid covering a window.

    ``values[i, j]`` is the intensity in the cell spanning
    ``x_edges[i]..x_edges[i + 1]`` and ``y_edges[j]..y_edges[j + 1]``.
    """

    values: np.ndarray
    x_edges: np.ndarray
    y_edges: np.ndarray
    window: Window
    bandwidth: float
    edge_corrected: bool = True
    source_label: Optional[str] = None

    @property
    def shape(self):
        return self.values.shape

    @property
    def cell_width(self) -> float:
        return float(self.x_edges[1] - self.x_edges[0])

    @property
    def cell_height(self) -> float:
        return float(self.y_edges[1] - self.y_edges[0])

    @property
    def cell_area(self) -> float:
        return self.cell_width * self.cell_height

    @property
    def x_centers(self) -> np.ndarray:
        return 0.5 * (self.x_edges[:-1] + self.x_edges[1:])

    @property
    def y_centers(self) -> np.ndarray:
        return 0.5 * (self.y_edges[:-1] + self.y_edges[1:])

    def integral(self) -> float:
        """Integrate the field over the window (expected number of points)."""
        return float(self.values.sum() * self.cell_area)

    def cell_index(self, coords: np.ndarray):
        """Grid cell indices (ix, iy) of each location, clipped to the grid."""
        coords = np.asarray(coords, dtype=float).reshape(-1, 2)
        nx, ny = self.values.shape
        ix = np.clip(np.floor((coords[:, 0] - self.x_edges[0]) / self.cell_width).astype(int), 0, nx - 1)
        iy = np.clip(np.floor((coords[:, 1] - self.y_edges[0]) / self.cell_height).astype(int), 0, ny - 1)
        return ix, iy

    def value_at(self, coords: np.ndarray) -> np.ndarray:
        """Field value at arbitrary locations (value of the containing cell)."""
        ix, iy = self.cell_index(coords)
        return self.values[ix, iy]

    def covers(self, window: Window) -> bool:
        """Whether the grid spans the given window."""
        tol = 1e-9 * max(window.width, window.height)
        return (
            self.x_edges[0] <= window.xmin + tol and self.x_edges[-1] >= window.xmax - tol
            and self.y_edges[0] <= window.ymin + tol and self.y_edges[-1] >= window.ymax - tol
        )
