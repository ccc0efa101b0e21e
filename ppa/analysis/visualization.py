"""Visualization functions for point pattern analysis"""
import logging
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from ppa.data.fields import DensityField
from ppa.data.patterns import PointPattern
from ppa.models.base import FittedModel

logger = logging.getLogger(__name__)

# Default color palette for cell types
CELL_TYPE_PALETTE = ['#E74C3C', '#3498DB', '#2ECC71', '#9B59B6', '#F39C12', '#1ABC9C']


def plot_density_field(
    field: DensityField,
    pattern: Optional[PointPattern] = None,
    output_path: Optional[str] = None,
    title: Optional[str] = None,
    cmap: str = 'viridis',
    point_size: float = 4,
    figsize: Tuple[int, int] = (7, 6)
):
    """Plot a density field, optionally overlaying the points it was built from

    Args:
        field: Density field to draw
        pattern: Point pattern drawn on top of the field
        output_path: Path to save figure
        title: Plot title (default: the field's source label)
        cmap: Colormap for the density
        point_size: Marker size for overlaid points
        figsize: Figure size
    """
    try:
        import matplotlib
        matplotlib.use('Agg')  # Non-interactive backend
        import matplotlib.pyplot as plt
    except ImportError:
        logger.error("matplotlib not installed")
        raise

    fig, ax = plt.subplots(figsize=figsize)

    # values are indexed [x, y]; imshow expects rows along y
    image = ax.imshow(
        field.values.T,
        origin='lower',
        extent=field.window.extent,
        cmap=cmap,
        aspect='equal'
    )
    plt.colorbar(image, ax=ax, label='Intensity (points per unit area)')

    if pattern is not None and pattern.n_points > 0:
        ax.scatter(pattern.x, pattern.y, s=point_size, c='white', edgecolors='black', linewidths=0.3)

    ax.set_xlabel('x')
    ax.set_ylabel('y')
    ax.set_title(title or f"Density: {field.source_label or 'pattern'} (bandwidth {field.bandwidth:.3g})")

    plt.tight_layout()

    if output_path:
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        logger.info(f"Saved density plot to {output_path}")

    plt.close()


def plot_intensity_by_group(
    summary: pd.DataFrame,
    group_col: str,
    value_col: str = 'intensity',
    hue_col: str = 'cell_type',
    output_path: Optional[str] = None,
    title: str = "Intensity by group",
    figsize: Tuple[int, int] = (10, 6)
):
    """Box plot with per-sample points of a summary value across groups

    Args:
        summary: Tidy table from ``summarize_patterns``
        group_col: Categorical column on the x axis
        value_col: Numeric column on the y axis
        hue_col: Column splitting boxes within a group
        output_path: Path to save figure
        title: Plot title
        figsize: Figure size
    """
    try:
        import matplotlib
        matplotlib.use('Agg')
        import matplotlib.pyplot as plt
        import seaborn as sns
    except ImportError:
        logger.error("matplotlib or seaborn not installed")
        raise

    for col in (group_col, value_col, hue_col):
        if col not in summary.columns:
            raise ValueError(f"Column '{col}' not found in summary table")

    n_hue = summary[hue_col].nunique()
    palette = CELL_TYPE_PALETTE[:n_hue] if n_hue <= len(CELL_TYPE_PALETTE) else None

    fig, ax = plt.subplots(figsize=figsize)
    sns.boxplot(
        data=summary, x=group_col, y=value_col, hue=hue_col,
        palette=palette, showfliers=False, ax=ax
    )
    sns.stripplot(
        data=summary, x=group_col, y=value_col, hue=hue_col,
        dodge=True, color='black', size=4, alpha=0.6, legend=False, ax=ax
    )

    ax.set_xlabel(group_col)
    ax.set_ylabel(value_col)
    ax.set_title(title)

    plt.tight_layout()

    if output_path:
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        logger.info(f"Saved intensity plot to {output_path}")

    plt.close()


def plot_coefficients(
    model: FittedModel,
    terms: Optional[List[str]] = None,
    exponentiate: bool = False,
    output_path: Optional[str] = None,
    title: Optional[str] = None,
    figsize: Tuple[int, int] = (8, 6)
):
    """Forest plot of coefficient estimates with their intervals

    Args:
        model: Fitted model
        terms: Terms to show (default: all except the intercepts)
        exponentiate: Show exp(estimate), e.g. rate ratios of a log-link model
        output_path: Path to save figure
        title: Plot title (default: model ID)
        figsize: Figure size
    """
    try:
        import matplotlib
        matplotlib.use('Agg')
        import matplotlib.pyplot as plt
    except ImportError:
        logger.error("matplotlib not installed")
        raise

    table = model.rate_ratios() if exponentiate else model.summary_frame()
    if terms is None:
        terms = [t for t in table.index if not t.endswith('Intercept')]
    if not terms:
        logger.warning(f"No terms to plot for model '{model.model_id}'")
        return
    table = table.loc[terms]

    y_pos = np.arange(len(table))[::-1]
    fig, ax = plt.subplots(figsize=figsize)
    ax.errorbar(
        table['estimate'], y_pos,
        xerr=[table['estimate'] - table['lower'], table['upper'] - table['estimate']],
        fmt='o', color='#3498DB', ecolor='#2C3E50', capsize=4
    )
    ax.axvline(1.0 if exponentiate else 0.0, color='grey', linestyle='--', linewidth=1)

    ax.set_yticks(y_pos)
    ax.set_yticklabels(table.index)
    level = int(round(model.confidence_level * 100))
    ax.set_xlabel(f"{'Rate ratio' if exponentiate else 'Estimate'} ({level}% interval)")
    ax.set_title(title or model.model_id)

    plt.tight_layout()

    if output_path:
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        logger.info(f"Saved coefficient plot to {output_path}")

    plt.close()
