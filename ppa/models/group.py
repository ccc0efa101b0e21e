# -*- coding: utf-8 -*-
"""
Group-level model of a per-sample summary statistic.

Fits a regression of a scalar response (typically cell intensity) on
categorical covariates such as days post injury, where the residual scale
may itself vary with covariates (heteroscedastic model). This module only
shapes inputs and outputs and validates preconditions; the likelihood is
maximised by a RegressionFitter.
"""

import logging
from typing import List, Optional, Sequence, Union

import pandas as pd
from pandas.api.types import is_numeric_dtype

from ppa.config import AnalysisConfig
from ppa.data.collection import SampleCollection
from ppa.exceptions import ColumnError, ConvergenceError, InsufficientDataError, MissingDataError
from ppa.models.base import FittedModel, fingerprint_frame, make_fitted_model
from ppa.models.design import build_design, declared_levels, is_categorical
from ppa.models.registry import RegressionFitter, get_fitter
from ppa.models.store import ModelStore, resolve_store

logger = logging.getLogger(__name__)


def _model_frame(
    table: Union[SampleCollection, pd.DataFrame],
    columns: List[str],
    missing: str
) -> pd.DataFrame:
    """Select model columns, applying the missing-data policy"""
    frame = table.to_frame() if isinstance(table, SampleCollection) else table

    absent = [c for c in columns if c not in frame.columns]
    if absent:
        raise ColumnError("Model columns not found", ', '.join(absent))

    frame = frame[columns].copy()
    n_missing = int(frame.isna().any(axis=1).sum())
    if n_missing:
        if missing != 'drop':
            raise MissingDataError(
                f"{n_missing} rows have missing values in {columns}; set missing='drop' to exclude them"
            )
        frame = frame.dropna()
        for col in frame.columns:
            if isinstance(frame[col].dtype, pd.CategoricalDtype):
                frame[col] = frame[col].cat.remove_unused_categories()
        logger.info(f"Dropped {n_missing} rows with missing values. Remaining: {len(frame)}")
    return frame


def fit_group_model(
    table: Union[SampleCollection, pd.DataFrame],
    response_column: str,
    covariate_columns: Sequence[str],
    variance_covariates: Optional[Sequence[str]] = None,
    config: Optional[AnalysisConfig] = None,
    fitter: Optional[Union[RegressionFitter, str]] = None,
    model_id: Optional[str] = None,
    store: Optional[ModelStore] = None
) -> FittedModel:
    """Fit a heteroscedastic regression of a scalar response on covariates.

    The mean is ``X @ beta`` and the residual standard deviation is
    ``exp(Z @ gamma)``, where X and Z hold an intercept plus treatment-coded
    covariates and variance covariates respectively.

    Args:
        table: SampleCollection or DataFrame with one row per sample
        response_column: Numeric response (e.g. ``intensity_microglia``)
        covariate_columns: Covariates of the mean
        variance_covariates: Covariates of the log residual scale
        config: Analysis configuration (confidence level, missing-data
            policy, iteration limits, cache policy)
        fitter: RegressionFitter or registry name (default: location_scale)
        model_id: Persistence key (default derived from the columns)
        store: Model store for persistence (default: ``config.cache_dir``)

    Returns:
        FittedModel with location terms and ``sigma:`` scale terms

    Raises:
        ColumnError: If a column is absent or the response is not numeric
        MissingDataError: If values are missing and missing='raise'
        InsufficientDataError: If there are not more observations than
            free parameters
        ConvergenceError: If the fit does not converge
    """
    config = config or AnalysisConfig()
    covariate_columns = list(covariate_columns)
    variance_covariates = list(variance_covariates or [])
    if fitter is None or isinstance(fitter, str):
        fitter = get_fitter(fitter or 'location_scale')
    if not isinstance(fitter, RegressionFitter):
        raise TypeError(f"Group model needs a RegressionFitter, got {type(fitter).__name__}")

    columns = list(dict.fromkeys([response_column] + covariate_columns + variance_covariates))
    frame = _model_frame(table, columns, config.missing)

    if len(frame) == 0:
        raise InsufficientDataError(f"Response column '{response_column}' has no observations")
    if not is_numeric_dtype(frame[response_column]) or is_categorical(frame[response_column]):
        raise ColumnError("Response column must be numeric", response_column)

    y = frame[response_column].astype(float)
    X = build_design(frame, covariate_columns)
    Z = build_design(frame, variance_covariates)

    n_obs = len(frame)
    n_params = X.shape[1] + Z.shape[1]
    if n_obs <= n_params:
        raise InsufficientDataError("Too few observations for the group model", n_obs, n_params)
    for col in dict.fromkeys(covariate_columns + variance_covariates):
        if is_categorical(frame[col]):
            n_levels = len(declared_levels(frame[col]))
            if n_obs < n_levels:
                raise InsufficientDataError(
                    f"Fewer observations than levels of covariate '{col}'", n_obs, n_levels
                )

    model_id = model_id or _default_model_id(response_column, covariate_columns, variance_covariates)
    fingerprint = fingerprint_frame(frame)

    def fit_fn() -> FittedModel:
        logger.info(
            f"Fitting group model '{model_id}' ({fitter.name}): {n_obs} observations, "
            f"{X.shape[1]} location and {Z.shape[1]} scale parameters"
        )
        try:
            result = fitter.fit(
                y, X, Z,
                confidence_level=config.confidence_level,
                max_iter=config.max_iter,
                tol=config.tol
            )
        except ConvergenceError as e:
            raise ConvergenceError(str(e), model_id) from e
        return make_fitted_model(
            result,
            model_id=model_id,
            kind='group',
            fitter_name=fitter.name,
            confidence_level=config.confidence_level,
            response=response_column,
            covariates=covariate_columns,
            data_fingerprint=fingerprint,
            details={'variance_covariates': variance_covariates}
        )

    store = resolve_store(store, config.cache_dir)
    if store is None:
        return fit_fn()
    return store.fit_or_load(model_id, fit_fn, config.model_cache_policy)


def _default_model_id(response: str, covariates: List[str], variance_covariates: List[str]) -> str:
    mean = '+'.join(covariates) or '1'
    scale = '+'.join(variance_covariates) or '1'
    return f"group__{response}__{mean}__sigma_{scale}"
