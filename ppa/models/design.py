"""Design matrix construction for categorical and numeric covariates"""
import logging
from typing import List, Sequence

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype

logger = logging.getLogger(__name__)

INTERCEPT = 'Intercept'


def is_categorical(series: pd.Series) -> bool:
    """Whether a column enters the design as a factor"""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return True
    return not is_numeric_dtype(series) or is_bool_dtype(series)


def declared_levels(series: pd.Series) -> List:
    """Factor levels: the declared categories, else the sorted observed values"""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    return sorted(series.dropna().unique(), key=str)


def build_design(frame: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Intercept plus treatment-coded dummies (first level as reference) and numeric columns

    Dummy columns are named ``<column>[T.<level>]``. Levels without
    observations are dropped.

    Args:
        frame: Table holding the covariates
        columns: Covariate columns

    Returns:
        Float DataFrame with the same index as ``frame``
    """
    design = pd.DataFrame({INTERCEPT: np.ones(len(frame))}, index=frame.index)
    for col in columns:
        series = frame[col]
        if is_categorical(series):
            observed = set(series.dropna().unique())
            levels = [lvl for lvl in declared_levels(series) if lvl in observed]
            unused = len(declared_levels(series)) - len(levels)
            if unused:
                logger.warning(f"Covariate '{col}' has {unused} levels without observations; dropped")
            for level in levels[1:]:
                design[f"{col}[T.{level}]"] = (series == level).astype(float).to_numpy()
        else:
            design[col] = series.astype(float).to_numpy()
    return design
