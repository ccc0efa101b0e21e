"""Explicit analysis configuration passed to every pipeline component"""
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional, Union

import numpy as np

from ppa.exceptions import InvalidBandwidthError

CACHE_POLICIES = ('never_refit', 'always_refit')
MISSING_POLICIES = ('raise', 'drop')


@dataclass(frozen=True)
class AnalysisConfig:
    """Parameters shared by the summary and model stages.

    Attributes:
        resolution: Grid cells per window side for density fields
        bandwidth: Gaussian kernel standard deviation in coordinate units,
            or ``"scott"`` for Scott's rule per pattern. Larger values
            trade spatial resolution for lower noise.
        edge_correction: Divide density fields by the smoothed window mask
        confidence_level: Coverage of reported coefficient intervals
        model_cache_policy: ``never_refit`` (reuse persisted models) or
            ``always_refit`` (ignore any cached artifact)
        cache_dir: Directory for persisted models (no caching if None)
        missing: ``raise`` on missing model inputs, or ``drop`` the rows
        max_iter: Iteration limit for numerical fits
        tol: Convergence tolerance for numerical fits
    """

    resolution: int = 128
    bandwidth: Union[float, str] = 'scott'
    edge_correction: bool = True
    confidence_level: float = 0.95
    model_cache_policy: str = 'always_refit'
    cache_dir: Optional[str] = None
    missing: str = 'raise'
    max_iter: int = 100
    tol: float = 1e-8

    def __post_init__(self):
        if isinstance(self.bandwidth, str):
            if self.bandwidth != 'scott':
                raise ValueError(f"Unknown bandwidth rule: {self.bandwidth!r}")
        elif not np.isfinite(self.bandwidth) or self.bandwidth <= 0:
            raise InvalidBandwidthError(self.bandwidth)
        if int(self.resolution) != self.resolution or self.resolution < 2:
            raise ValueError(f"Resolution must be an integer >= 2, got {self.resolution}")
        if not 0 < self.confidence_level < 1:
            raise ValueError(f"Confidence level must be in (0, 1), got {self.confidence_level}")
        if self.model_cache_policy not in CACHE_POLICIES:
            raise ValueError(f"Unknown cache policy {self.model_cache_policy!r}. Use one of {CACHE_POLICIES}")
        if self.missing not in MISSING_POLICIES:
            raise ValueError(f"Unknown missing-data policy {self.missing!r}. Use one of {MISSING_POLICIES}")
        if self.max_iter < 1 or self.tol <= 0:
            raise ValueError("max_iter must be >= 1 and tol must be positive")

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> 'AnalysisConfig':
        """Build from a (YAML) dictionary, ignoring unknown keys and None values."""
        config = config or {}
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in config.items() if k in known and v is not None}
        if 'bandwidth' in kwargs and kwargs['bandwidth'] != 'scott':
            kwargs['bandwidth'] = float(kwargs['bandwidth'])
        # PyYAML reads exponent floats such as 1e-8 as strings
        for key, cast in (('resolution', int), ('max_iter', int), ('tol', float), ('confidence_level', float)):
            if key in kwargs:
                kwargs[key] = cast(kwargs[key])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
