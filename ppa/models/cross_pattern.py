# -*- coding: utf-8 -*-
"""
Cross-pattern point process regression.

Models the intensity of one cell type as a log-linear function of the
local density of another cell type, pooled over all samples:

    log lambda(u) = beta0 + beta1 * density(u) [+ sample-level shifts]

The point process likelihood is approximated on a quadrature grid (the
cells of each sample's covariate density field): the number of response
points per cell is Poisson with mean ``lambda * cell_area``. exp(beta1) is
the multiplicative change in intensity per unit of covariate density.
"""

import logging
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ppa.config import AnalysisConfig
from ppa.data.collection import ColumnKind, SampleCollection
from ppa.exceptions import ConvergenceError, InsufficientDataError, MissingDataError, WindowError
from ppa.models.base import FittedModel, fingerprint_frame, make_fitted_model
from ppa.models.design import build_design
from ppa.models.registry import PointProcessFitter, get_fitter
from ppa.models.store import ModelStore, resolve_store

logger = logging.getLogger(__name__)


def _clipped_extents(edges: np.ndarray, low: float, high: float) -> np.ndarray:
    """Length of each grid interval lying inside [low, high] (zero outside)"""
    return np.clip(np.minimum(edges[1:], high) - np.maximum(edges[:-1], low), 0.0, None)


def _cell_index(coords: np.ndarray, edges: np.ndarray, extents: np.ndarray) -> np.ndarray:
    """Grid interval index of each coordinate, restricted to intervals with positive extent"""
    kept = np.flatnonzero(extents > 0)
    index = np.searchsorted(edges, coords, side='right') - 1
    return np.clip(index, kept[0], kept[-1])


def build_quadrature(
    collection: SampleCollection,
    response_pattern_column: str,
    covariate_field_column: str,
    sample_covariates: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Pool response counts and covariate values over all samples.

    One row per (sample, grid cell) of the covariate density field, restricted
    to cells overlapping the response pattern's window. Cells straddling the
    window border carry only their area inside the window.

    Args:
        collection: Sample collection
        response_pattern_column: PATTERN column whose intensity is modelled
        covariate_field_column: FIELD column providing the covariate
        sample_covariates: CATEGORY columns copied onto every row of a sample

    Returns:
        DataFrame with columns sample_id, count, covariate, area and the
        sample covariates

    Raises:
        ColumnError: If a column is absent or of the wrong kind
        WindowError: If a sample's field does not cover its pattern window
    """
    collection.require_kind(response_pattern_column, ColumnKind.PATTERN)
    collection.require_kind(covariate_field_column, ColumnKind.FIELD)
    sample_covariates = list(sample_covariates or [])
    for col in sample_covariates:
        collection.require_kind(col, ColumnKind.CATEGORY)

    frames = []
    for sample_id, row in collection.iter_rows():
        pattern = row[response_pattern_column]
        field = row[covariate_field_column]

        if not pattern.window.area > 0:
            raise WindowError(f"Sample '{sample_id}' has a degenerate observation window")
        if not field.covers(pattern.window):
            raise WindowError(
                f"Density field '{covariate_field_column}' of sample '{sample_id}' does not cover "
                f"the window of pattern '{response_pattern_column}'"
            )
        if not np.all(np.isfinite(field.values)):
            raise WindowError(f"Density field of sample '{sample_id}' has non-finite values")

        window = pattern.window
        widths = _clipped_extents(field.x_edges, window.xmin, window.xmax)
        heights = _clipped_extents(field.y_edges, window.ymin, window.ymax)
        areas = np.outer(widths, heights)
        counts = np.zeros(field.shape)
        np.add.at(
            counts,
            (_cell_index(pattern.x, field.x_edges, widths), _cell_index(pattern.y, field.y_edges, heights)),
            1
        )
        inside = areas.ravel() > 0
        sample_frame = pd.DataFrame({
            'sample_id': sample_id,
            'count': counts.ravel()[inside],
            'covariate': field.values.ravel()[inside],
            'area': areas.ravel()[inside]
        })
        for col in sample_covariates:
            sample_frame[col] = row[col]
        frames.append(sample_frame)

    quadrature = pd.concat(frames, ignore_index=True)
    for col in sample_covariates:
        quadrature[col] = pd.Categorical(quadrature[col])
    return quadrature


def fit_cross_pattern_model(
    collection: SampleCollection,
    response_pattern_column: str,
    covariate_field_column: str,
    sample_covariates: Optional[Sequence[str]] = None,
    config: Optional[AnalysisConfig] = None,
    fitter: Optional[Union[PointProcessFitter, str]] = None,
    model_id: Optional[str] = None,
    store: Optional[ModelStore] = None,
    standardize: bool = False
) -> FittedModel:
    """Fit a pooled log-link point process regression across all samples.

    Args:
        collection: Sample collection
        response_pattern_column: PATTERN column whose intensity is modelled
        covariate_field_column: FIELD column of covariate density
        sample_covariates: CATEGORY columns entering as intercept shifts
        config: Analysis configuration (confidence level, iteration
            limits, missing-data and cache policies)
        fitter: PointProcessFitter or registry name (default: poisson_glm)
        model_id: Persistence key (default derived from the columns)
        store: Model store for persistence (default: ``config.cache_dir``)
        standardize: Centre and scale the covariate over the pooled grid;
            the coefficient is then per standard deviation of density

    Returns:
        FittedModel; the covariate term is named after the field column

    Raises:
        ColumnError: If a column is absent or of the wrong kind
        WindowError: If a sample contributes a degenerate window or field
        MissingDataError: If sample covariates are missing and missing='raise'
        InsufficientDataError: If the pooled data has no response points or
            too few quadrature cells
        ConvergenceError: If the optimiser does not converge
    """
    config = config or AnalysisConfig()
    sample_covariates = list(sample_covariates or [])
    if fitter is None or isinstance(fitter, str):
        fitter = get_fitter(fitter or 'poisson_glm')
    if not isinstance(fitter, PointProcessFitter):
        raise TypeError(f"Cross-pattern model needs a PointProcessFitter, got {type(fitter).__name__}")

    quadrature = build_quadrature(collection, response_pattern_column, covariate_field_column, sample_covariates)

    if sample_covariates:
        missing_mask = quadrature[sample_covariates].isna().any(axis=1)
        if missing_mask.any():
            n_samples = quadrature.loc[missing_mask, 'sample_id'].nunique()
            if config.missing != 'drop':
                raise MissingDataError(f"{n_samples} samples have missing values in {sample_covariates}")
            quadrature = quadrature.loc[~missing_mask].reset_index(drop=True)
            for col in sample_covariates:
                quadrature[col] = quadrature[col].cat.remove_unused_categories()
            logger.info(f"Dropped {n_samples} samples with missing covariates")

    n_points = int(quadrature['count'].sum())
    if n_points == 0:
        raise InsufficientDataError(f"Pattern '{response_pattern_column}' has no points in any sample")

    covariate = quadrature['covariate'].to_numpy(dtype=float)
    details = {
        'n_samples': int(quadrature['sample_id'].nunique()),
        'n_points': n_points,
        'standardized': standardize,
        'sample_covariates': sample_covariates
    }
    if standardize:
        mean, sd = float(covariate.mean()), float(covariate.std())
        if sd == 0:
            raise InsufficientDataError(f"Covariate field '{covariate_field_column}' is constant")
        covariate = (covariate - mean) / sd
        details.update({'covariate_mean': mean, 'covariate_sd': sd})

    X = build_design(quadrature, sample_covariates)
    X.insert(1, covariate_field_column, covariate)
    offset = np.log(quadrature['area'].to_numpy(dtype=float))

    n_obs, n_params = len(quadrature), X.shape[1]
    if n_obs <= n_params:
        raise InsufficientDataError("Too few quadrature cells for the cross-pattern model", n_obs, n_params)

    model_id = model_id or _default_model_id(response_pattern_column, covariate_field_column, sample_covariates)
    fingerprint = fingerprint_frame(quadrature)

    def fit_fn() -> FittedModel:
        logger.info(
            f"Fitting cross-pattern model '{model_id}' ({fitter.name}): {details['n_samples']} samples, "
            f"{n_obs} quadrature cells, {n_points} points"
        )
        try:
            result = fitter.fit(
                quadrature['count'],
                X,
                offset,
                confidence_level=config.confidence_level,
                max_iter=config.max_iter,
                tol=config.tol
            )
        except ConvergenceError as e:
            raise ConvergenceError(str(e), model_id) from e
        return make_fitted_model(
            result,
            model_id=model_id,
            kind='cross_pattern',
            fitter_name=fitter.name,
            confidence_level=config.confidence_level,
            response=response_pattern_column,
            covariates=[covariate_field_column] + sample_covariates,
            data_fingerprint=fingerprint,
            details=details
        )

    store = resolve_store(store, config.cache_dir)
    if store is None:
        return fit_fn()
    return store.fit_or_load(model_id, fit_fn, config.model_cache_policy)


def _default_model_id(response: str, field: str, sample_covariates: List[str]) -> str:
    shifts = '+'.join(sample_covariates) or '1'
    return f"cross__{response}__{field}__{shifts}"
