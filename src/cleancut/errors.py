from __future__ import annotations

__all__ = [
    "CleancutError",
    "ModelLoadError",
    "UnsupportedInputError",
    "MattingEstimationError",
    "EmptyBatchError",
]


class CleancutError(Exception):
    """Base class for every error raised by this package."""


class ModelLoadError(CleancutError):
    """Model bytes could not be fetched, verified or built into a session."""

    def __init__(self, model_name: str, reason: str) -> None:
        super().__init__(f"Failed to load model '{model_name}': {reason}")
        self.model_name = model_name
        self.reason = reason


class UnsupportedInputError(CleancutError, TypeError):
    """A batch item is neither bytes, a PIL image nor a numpy array."""


class MattingEstimationError(CleancutError):
    """The alpha estimator could not produce a matte for an image."""


class EmptyBatchError(CleancutError, ValueError):
    """A batch operation was called with zero images."""
