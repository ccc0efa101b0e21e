"""Exception classes for point pattern analysis."""
from typing import Optional


class PPAError(Exception):
    """Base exception for all point pattern analysis errors."""


class LoadError(PPAError):
    """Raised when a persisted dataset is absent, unreadable or inconsistent."""

    def __init__(self, message: str, path: Optional[str] = None):
        msg = f"{message}: {path}" if path else message
        super().__init__(msg)
        self.path = path


class InvalidBandwidthError(PPAError):
    """Raised when a smoothing bandwidth is not a positive number."""

    def __init__(self, bandwidth=None):
        super().__init__(f"Bandwidth must be a positive number, got {bandwidth!r}")
        self.bandwidth = bandwidth


class InsufficientDataError(PPAError):
    """Raised when there are too few observations for the requested model."""

    def __init__(self, message: str, n_obs: Optional[int] = None, n_params: Optional[int] = None):
        if n_obs is not None and n_params is not None:
            message = f"{message} ({n_obs} observations, {n_params} free parameters)"
        super().__init__(message)
        self.n_obs = n_obs
        self.n_params = n_params


class ConvergenceError(PPAError):
    """Raised when a numerical fit does not converge."""

    def __init__(self, message: str, model_id: Optional[str] = None):
        msg = f"{message} [model: {model_id}]" if model_id else message
        super().__init__(msg)
        self.model_id = model_id


class WindowError(PPAError):
    """Raised for degenerate observation windows or points outside a window."""


class MissingDataError(PPAError):
    """Raised when missing values are found and no drop policy is configured."""


class ColumnError(PPAError):
    """Raised for absent, mistyped or misaligned sample collection columns."""

    def __init__(self, message: str, column: Optional[str] = None):
        msg = f"{message}: {column}" if column else message
        super().__init__(msg)
        self.column = column
