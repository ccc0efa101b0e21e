# -*- coding: utf-8 -*-
"""
Fitter registry for the group-level and cross-pattern models.

The numerical fitting is delegated to statsmodels behind two narrow
interfaces, so that the pipeline code can be exercised with stub fitters.

Supported fitters:
- Location-scale Gaussian regression (statsmodels GenericLikelihoodModel)
- Ordinary least squares with HC3 errors (statsmodels OLS)
- Poisson log-link regression on quadrature counts (statsmodels GLM)
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Union
import logging
import warnings

import numpy as np
import pandas as pd
from scipy import stats

from ppa.exceptions import ConvergenceError
from ppa.models.base import FitResult

logger = logging.getLogger(__name__)

SCALE_PREFIX = 'sigma:'


def _coefficient_table(results, confidence_level: float) -> pd.DataFrame:
    """Estimates, standard errors and Wald intervals of a statsmodels result"""
    conf_int = np.asarray(results.conf_int(alpha=1 - confidence_level), dtype=float)
    table = pd.DataFrame({
        'estimate': np.asarray(results.params, dtype=float),
        'std_error': np.asarray(results.bse, dtype=float),
        'lower': conf_int[:, 0],
        'upper': conf_int[:, 1]
    }, index=pd.Index([str(n) for n in results.model.exog_names], name='term'))
    if not np.all(np.isfinite(table.to_numpy())):
        bad = table.index[~np.isfinite(table.to_numpy()).all(axis=1)].tolist()
        raise ConvergenceError(f"Non-finite estimates or standard errors for terms {bad}")
    return table


class RegressionFitter(ABC):
    """Abstract base class for scalar-response regression engines.

    Implementations must provide:
    - fit(): Returns a FitResult for response ``y`` on location design ``X``
      and scale design ``Z``
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the fitter name."""
        pass

    @abstractmethod
    def fit(
        self,
        y: pd.Series,
        X: pd.DataFrame,
        Z: pd.DataFrame,
        confidence_level: float = 0.95,
        max_iter: int = 100,
        tol: float = 1e-8
    ) -> FitResult:
        """Fit the regression.

        Args:
            y: Response values
            X: Location design matrix (with intercept column)
            Z: Scale design matrix (with intercept column)
            confidence_level: Interval coverage
            max_iter: Iteration limit
            tol: Convergence tolerance

        Returns:
            FitResult with one coefficient row per design column
        """
        pass


class PointProcessFitter(ABC):
    """Abstract base class for log-linear point process regression engines."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the fitter name."""
        pass

    @abstractmethod
    def fit(
        self,
        counts: pd.Series,
        X: pd.DataFrame,
        offset: np.ndarray,
        confidence_level: float = 0.95,
        max_iter: int = 100,
        tol: float = 1e-8
    ) -> FitResult:
        """Fit ``log E[counts] = offset + X @ beta``.

        Args:
            counts: Point counts per quadrature cell
            X: Design matrix (with intercept column)
            offset: Log cell area per quadrature cell
            confidence_level: Interval coverage
            max_iter: Iteration limit
            tol: Convergence tolerance

        Returns:
            FitResult with one coefficient row per design column
        """
        pass


class LocationScaleFitter(RegressionFitter):
    """Gaussian regression with a log-linear model for the residual scale.

    ``y ~ N(X @ beta, exp(Z @ gamma) ** 2)``, fitted by maximum likelihood
    with Newton steps; intervals are Wald intervals from the observed
    information. Scale terms are prefixed with ``sigma:``.
    """

    @property
    def name(self) -> str:
        return "location_scale"

    def fit(self, y, X, Z, confidence_level=0.95, max_iter=100, tol=1e-8) -> FitResult:
        from statsmodels.base.model import GenericLikelihoodModel
        from statsmodels.tools.sm_exceptions import ConvergenceWarning

        scale_design = Z.to_numpy(dtype=float)

        class LocationScaleLikelihood(GenericLikelihoodModel):
            def _residuals(self, params):
                k = self.exog.shape[1]
                mu = self.exog @ params[:k]
                sigma = np.exp(scale_design @ params[k:])
                return self.endog - mu, sigma

            def loglikeobs(self, params):
                resid, sigma = self._residuals(params)
                return stats.norm.logpdf(resid, scale=sigma)

            def score(self, params):
                resid, sigma = self._residuals(params)
                z = resid / sigma
                return np.concatenate([
                    self.exog.T @ (z / sigma),
                    scale_design.T @ (z ** 2 - 1)
                ])

            def hessian(self, params):
                resid, sigma = self._residuals(params)
                z = resid / sigma
                h_bb = -(self.exog.T * sigma ** -2) @ self.exog
                h_bg = -2 * (self.exog.T * (z / sigma)) @ scale_design
                h_gg = -2 * (scale_design.T * z ** 2) @ scale_design
                return np.block([[h_bb, h_bg], [h_bg.T, h_gg]])

        start_params = self._start_params(y.to_numpy(dtype=float), X.to_numpy(dtype=float), scale_design)
        model = LocationScaleLikelihood(
            y.astype(float), X.astype(float),
            extra_params_names=[f'{SCALE_PREFIX}{c}' for c in Z.columns]
        )

        try:
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', RuntimeWarning)
                warnings.simplefilter('ignore', ConvergenceWarning)
                results = model.fit(
                    start_params=start_params,
                    method='newton',
                    maxiter=max_iter,
                    tol=tol,
                    disp=False
                )
        except (np.linalg.LinAlgError, ValueError) as e:
            raise ConvergenceError(f"Location-scale fit failed: {e}") from e

        converged = bool(results.mle_retvals.get('converged', False))
        if not converged:
            raise ConvergenceError(
                f"Location-scale fit did not converge within {max_iter} iterations"
            )

        table = _coefficient_table(results, confidence_level)
        return FitResult(
            coefficients=table,
            log_likelihood=float(results.llf),
            converged=converged,
            n_obs=int(results.nobs),
            details={'iterations': int(results.mle_retvals.get('iterations', -1))}
        )

    @staticmethod
    def _start_params(y: np.ndarray, X: np.ndarray, Z: np.ndarray) -> np.ndarray:
        """OLS location estimates and a log-absolute-residual regression for the scale"""
        beta, *_ = np.linalg.lstsq(X, y, rcond=None)
        resid = np.abs(y - X @ beta)
        resid = np.maximum(resid, 1e-3 * (resid.mean() if resid.mean() > 0 else 1.0))
        # E[log|e|] = log(sigma) - 0.635 for Gaussian e
        gamma, *_ = np.linalg.lstsq(Z, np.log(resid) + 0.635, rcond=None)
        return np.concatenate([beta, gamma])


class OLSFitter(RegressionFitter):
    """Homoscedastic least squares baseline with HC3 robust standard errors.

    The scale design is ignored; a single ``sigma:Intercept`` row reports the
    log residual standard deviation without an interval of its own.
    """

    @property
    def name(self) -> str:
        return "ols"

    def fit(self, y, X, Z, confidence_level=0.95, max_iter=100, tol=1e-8) -> FitResult:
        import statsmodels.api as sm

        if Z.shape[1] > 1:
            logger.warning("OLS fitter ignores variance covariates; residual scale is constant")

        results = sm.OLS(y.astype(float), X.astype(float)).fit(cov_type='HC3')
        table = _coefficient_table(results, confidence_level)
        log_sigma = 0.5 * np.log(results.scale)
        table.loc[f'{SCALE_PREFIX}Intercept'] = [log_sigma, 0.0, log_sigma, log_sigma]
        return FitResult(
            coefficients=table,
            log_likelihood=float(results.llf),
            converged=True,
            n_obs=int(results.nobs)
        )


class PoissonGLMFitter(PointProcessFitter):
    """Poisson regression with log link fitted by IRLS in statsmodels."""

    @property
    def name(self) -> str:
        return "poisson_glm"

    def fit(self, counts, X, offset, confidence_level=0.95, max_iter=100, tol=1e-8) -> FitResult:
        import statsmodels.api as sm
        from statsmodels.tools.sm_exceptions import ConvergenceWarning

        model = sm.GLM(
            counts.astype(float), X.astype(float),
            family=sm.families.Poisson(),
            offset=np.asarray(offset, dtype=float)
        )
        try:
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', RuntimeWarning)
                warnings.simplefilter('ignore', ConvergenceWarning)
                results = model.fit(maxiter=max_iter, tol=tol)
        except (np.linalg.LinAlgError, ValueError) as e:
            raise ConvergenceError(f"Poisson GLM fit failed: {e}") from e

        converged = bool(getattr(results, 'converged', True))
        if not converged:
            raise ConvergenceError(
                f"Poisson GLM did not converge within {max_iter} iterations (tol={tol})"
            )

        table = _coefficient_table(results, confidence_level)
        return FitResult(
            coefficients=table,
            log_likelihood=float(results.llf),
            converged=converged,
            n_obs=int(results.nobs),
            details={'deviance': float(results.deviance)}
        )


# Fitter Registry - maps fitter names to instances
FITTER_REGISTRY: Dict[str, Union[RegressionFitter, PointProcessFitter]] = {
    # Location-scale aliases
    'location_scale': LocationScaleFitter(),
    'ls': LocationScaleFitter(),
    'heteroscedastic': LocationScaleFitter(),

    # OLS aliases
    'ols': OLSFitter(),
    'lm': OLSFitter(),

    # Poisson GLM aliases
    'poisson_glm': PoissonGLMFitter(),
    'glm': PoissonGLMFitter(),
    'poisson': PoissonGLMFitter()
}


def get_fitter(fitter_name: str) -> Union[RegressionFitter, PointProcessFitter]:
    """Get fitter from registry by name.

    Args:
        fitter_name: Name or alias of the fitter

    Returns:
        Fitter instance

    Raises:
        ValueError: If fitter name is not in registry
    """
    fitter_name = fitter_name.lower().strip()

    if fitter_name not in FITTER_REGISTRY:
        available = list_available_fitters()
        raise ValueError(
            f"Unknown fitter: '{fitter_name}'. "
            f"Available fitters: {available}"
        )

    return FITTER_REGISTRY[fitter_name]


def list_available_fitters() -> List[str]:
    """List all available fitter names (without aliases)."""
    return sorted(set(fitter.name for fitter in FITTER_REGISTRY.values()))
