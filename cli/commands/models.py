"""Group-level and cross-pattern model fitting"""
import logging
import os
import re
from pathlib import Path
from typing import List, Optional

import pandas as pd

from ppa.analysis.summaries import add_density_column, add_intensity_column
from ppa.config import AnalysisConfig
from ppa.data.collection import SampleCollection
from ppa.models.base import FittedModel
from ppa.models.cross_pattern import fit_cross_pattern_model
from ppa.models.group import fit_group_model

logger = logging.getLogger(__name__)


def _output_stem(model_id: str) -> str:
    return re.sub(r'[^A-Za-z0-9_.=+-]', '_', model_id)


def save_model_tables(model: FittedModel, output_dir: str, include_rate_ratios: bool = False) -> str:
    """Write ``<model_id>_coefficients.csv`` (with rate ratio columns for log-link models)

    Returns:
        Path of the written table
    """
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    table = model.summary_frame()
    if include_rate_ratios:
        ratios = model.rate_ratios().add_prefix('rate_ratio_')
        table = pd.concat([table, ratios], axis=1)

    path = os.path.join(output_dir, f"{_output_stem(model.model_id)}_coefficients.csv")
    table.to_csv(path)
    logger.info(f"Saved coefficients for '{model.model_id}' to {path}")
    return path


def _log_coefficients(model: FittedModel, exponentiate: bool = False):
    table = model.rate_ratios() if exponentiate else model.summary_frame()
    level = int(round(model.confidence_level * 100))
    for term, row in table.iterrows():
        logger.info(f"  {term}: {row['estimate']:.4g} ({level}% interval {row['lower']:.4g} to {row['upper']:.4g})")


def run_group_model(
    collection: SampleCollection,
    output_dir: str,
    response_pattern: str,
    covariates: List[str],
    variance_covariates: Optional[List[str]] = None,
    config: Optional[AnalysisConfig] = None,
    fitter: str = 'location_scale',
    generate_plots: bool = True
) -> FittedModel:
    """Fit the group-level model of a cell type's intensity and write its coefficients

    Args:
        collection: Loaded sample collection
        output_dir: Output directory for tables and plots
        response_pattern: Cell type whose intensity is the response
        covariates: Sample covariates of the mean
        variance_covariates: Sample covariates of the residual scale
        config: Analysis configuration
        fitter: Registry name of the regression fitter
        generate_plots: Write a coefficient forest plot

    Returns:
        FittedModel
    """
    config = config or AnalysisConfig()
    response_column = f"intensity_{response_pattern}"
    if response_column not in collection:
        add_intensity_column(collection, response_pattern, name=response_column)

    model = fit_group_model(
        collection,
        response_column,
        covariates,
        variance_covariates=variance_covariates or [],
        config=config,
        fitter=fitter
    )
    logger.info(f"Group model '{model.model_id}' ({model.n_obs} samples):")
    _log_coefficients(model)
    save_model_tables(model, output_dir)

    if generate_plots:
        from ppa.analysis.visualization import plot_coefficients
        plot_coefficients(
            model,
            output_path=os.path.join(output_dir, f"{_output_stem(model.model_id)}_coefficients.png")
        )
    return model


def run_cross_pattern_model(
    collection: SampleCollection,
    output_dir: str,
    response_pattern: str,
    covariate_pattern: str,
    sample_covariates: Optional[List[str]] = None,
    config: Optional[AnalysisConfig] = None,
    fitter: str = 'poisson_glm',
    standardize: bool = False,
    generate_plots: bool = True
) -> FittedModel:
    """Fit the cross-pattern model and write coefficients with rate ratios

    Args:
        collection: Loaded sample collection
        output_dir: Output directory for tables and plots
        response_pattern: Cell type whose intensity is modelled
        covariate_pattern: Cell type whose density is the covariate
        sample_covariates: Sample covariates entering as intercept shifts
        config: Analysis configuration (also sets the density bandwidth)
        fitter: Registry name of the point process fitter
        standardize: Report the effect per standard deviation of density
        generate_plots: Write a rate ratio forest plot

    Returns:
        FittedModel
    """
    config = config or AnalysisConfig()
    field_column = f"density_{covariate_pattern}"
    if field_column not in collection:
        add_density_column(collection, covariate_pattern, config=config, name=field_column)

    model = fit_cross_pattern_model(
        collection,
        response_pattern,
        field_column,
        sample_covariates=sample_covariates or [],
        config=config,
        fitter=fitter,
        standardize=standardize
    )
    logger.info(f"Cross-pattern model '{model.model_id}' ({model.details.get('n_points')} points), rate ratios:")
    _log_coefficients(model, exponentiate=True)
    save_model_tables(model, output_dir, include_rate_ratios=True)

    if generate_plots:
        from ppa.analysis.visualization import plot_coefficients
        plot_coefficients(
            model,
            exponentiate=True,
            output_path=os.path.join(output_dir, f"{_output_stem(model.model_id)}_rate_ratios.png")
        )
    return model
