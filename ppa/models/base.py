# -*- coding: utf-8 -*-
"""
Fitted model records shared by the group-level and cross-pattern models.

A FittedModel is an immutable artifact: coefficient estimates with
uncertainty intervals plus enough provenance (fitter, data fingerprint,
confidence level) to decide whether a persisted copy can be reused.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

COEFFICIENT_COLUMNS = ['estimate', 'std_error', 'lower', 'upper']


@dataclass
class FitResult:
    """Raw output of a fitter before it is wrapped into a FittedModel."""

    coefficients: pd.DataFrame
    log_likelihood: float
    converged: bool
    n_obs: int
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class FittedModel:
    """Coefficient table and provenance of one fitted model.

    Attributes:
        model_id: Identifier, also the persistence key
        kind: ``group`` or ``cross_pattern``
        fitter: Name of the fitter that produced the estimates
        coefficients: DataFrame indexed by term with columns estimate,
            std_error, lower and upper
        confidence_level: Coverage of the lower/upper interval
        n_obs: Number of observations used
        converged: Whether the optimiser reported convergence
        log_likelihood: Maximised log-likelihood
        response: Response column
        covariates: Covariate columns
        data_fingerprint: Hash of the table snapshot the model was fit on
        created_at: ISO timestamp
        details: Free-form extra information (e.g. covariate scaling)
    """

    model_id: str
    kind: str
    fitter: str
    coefficients: pd.DataFrame
    confidence_level: float
    n_obs: int
    converged: bool
    log_likelihood: float
    response: str
    covariates: List[str]
    data_fingerprint: str = ''
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def terms(self) -> List[str]:
        return list(self.coefficients.index)

    def summary_frame(self) -> pd.DataFrame:
        """Coefficient table as a plain DataFrame for downstream renderers."""
        frame = self.coefficients[COEFFICIENT_COLUMNS].copy()
        frame.index.name = 'term'
        return frame

    def estimate(self, term: str) -> float:
        return float(self.coefficients.at[term, 'estimate'])

    def interval(self, term: str) -> Tuple[float, float]:
        return (
            float(self.coefficients.at[term, 'lower']),
            float(self.coefficients.at[term, 'upper'])
        )

    def rate_ratios(self) -> pd.DataFrame:
        """Exponentiated estimates and bounds.

        For log-link models each value is the multiplicative change in
        intensity per unit increase of the term.
        """
        return np.exp(self.coefficients[['estimate', 'lower', 'upper']]).rename_axis('term')

    def to_dict(self) -> Dict[str, Any]:
        coefficients = self.coefficients[COEFFICIENT_COLUMNS]
        return {
            'model_id': self.model_id,
            'kind': self.kind,
            'fitter': self.fitter,
            'coefficients': {
                'terms': [str(t) for t in coefficients.index],
                'columns': COEFFICIENT_COLUMNS,
                'values': coefficients.to_numpy(dtype=float).tolist()
            },
            'confidence_level': self.confidence_level,
            'n_obs': int(self.n_obs),
            'converged': bool(self.converged),
            'log_likelihood': float(self.log_likelihood),
            'response': self.response,
            'covariates': list(self.covariates),
            'data_fingerprint': self.data_fingerprint,
            'created_at': self.created_at,
            'details': self.details
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FittedModel':
        coef = data['coefficients']
        coefficients = pd.DataFrame(
            coef['values'], index=pd.Index(coef['terms'], name='term'), columns=coef['columns']
        )
        return cls(
            model_id=data['model_id'],
            kind=data['kind'],
            fitter=data['fitter'],
            coefficients=coefficients,
            confidence_level=float(data['confidence_level']),
            n_obs=int(data['n_obs']),
            converged=bool(data['converged']),
            log_likelihood=float(data['log_likelihood']),
            response=data['response'],
            covariates=list(data['covariates']),
            data_fingerprint=data.get('data_fingerprint', ''),
            created_at=data.get('created_at', ''),
            details=data.get('details', {})
        )


def fingerprint_frame(frame: pd.DataFrame) -> str:
    """Stable hash of a DataFrame's index and values"""
    hashed = pd.util.hash_pandas_object(frame, index=True).to_numpy()
    digest = hashlib.sha256(hashed.tobytes())
    digest.update(','.join(map(str, frame.columns)).encode('utf-8'))
    return digest.hexdigest()[:16]


def make_fitted_model(
    result: FitResult,
    model_id: str,
    kind: str,
    fitter_name: str,
    confidence_level: float,
    response: str,
    covariates: List[str],
    data_fingerprint: str,
    details: Optional[Dict[str, Any]] = None
) -> FittedModel:
    """Wrap a fitter's result with provenance"""
    merged = dict(result.details)
    merged.update(details or {})
    return FittedModel(
        model_id=model_id,
        kind=kind,
        fitter=fitter_name,
        coefficients=result.coefficients[COEFFICIENT_COLUMNS].copy(),
        confidence_level=confidence_level,
        n_obs=result.n_obs,
        converged=result.converged,
        log_likelihood=result.log_likelihood,
        response=response,
        covariates=list(covariates),
        data_fingerprint=data_fingerprint,
        details=merged
    )
