"""Persistence of fitted models with a refit policy"""
import json
import logging
import re
from pathlib import Path
from typing import Callable, Optional

from ppa.config import CACHE_POLICIES
from ppa.models.base import FittedModel

logger = logging.getLogger(__name__)

NEVER_REFIT = 'never_refit'
ALWAYS_REFIT = 'always_refit'


class ModelStore:
    """Directory of fitted models stored as JSON, keyed by model ID."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def path_for(self, model_id: str) -> Path:
        safe_id = re.sub(r'[^A-Za-z0-9_.=+-]', '_', model_id)
        return self.directory / f"{safe_id}.json"

    def exists(self, model_id: str) -> bool:
        return self.path_for(model_id).exists()

    def save(self, model: FittedModel) -> Path:
        path = self.path_for(model.model_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(model.to_dict(), f, indent=2)
        logger.info(f"Saved model '{model.model_id}' to {path}")
        return path

    def load(self, model_id: str) -> FittedModel:
        """Load a persisted model.

        Raises:
            FileNotFoundError: If no model is stored under this ID
            ValueError: If the stored file is not a valid model
        """
        path = self.path_for(model_id)
        if not path.exists():
            raise FileNotFoundError(f"No persisted model: {path}")
        try:
            with open(path, 'r') as f:
                model = FittedModel.from_dict(json.load(f))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Invalid model file {path}: {e}") from e
        if model.model_id != model_id:
            raise ValueError(f"Model file {path} holds '{model.model_id}', expected '{model_id}'")
        return model

    def fit_or_load(
        self,
        model_id: str,
        fit_fn: Callable[[], FittedModel],
        policy: str = ALWAYS_REFIT
    ) -> FittedModel:
        """Return a persisted model or fit (and persist) a new one.

        Args:
            model_id: Persistence key
            fit_fn: Zero-argument callable producing the model
            policy: ``never_refit`` reuses a valid persisted model;
                ``always_refit`` ignores and overwrites it

        Returns:
            FittedModel
        """
        if policy not in CACHE_POLICIES:
            raise ValueError(f"Unknown cache policy {policy!r}. Use one of {CACHE_POLICIES}")

        if policy == NEVER_REFIT and self.exists(model_id):
            try:
                model = self.load(model_id)
                logger.info(f"Loaded persisted model '{model_id}' (never_refit)")
                return model
            except ValueError as e:
                logger.warning(f"Could not load persisted model: {e}. Refitting.")

        model = fit_fn()
        self.save(model)
        return model


def resolve_store(store: Optional[ModelStore], cache_dir: Optional[str]) -> Optional[ModelStore]:
    """Explicit store, else one rooted at the configured cache directory"""
    if store is not None:
        return store
    if cache_dir:
        return ModelStore(cache_dir)
    return None
