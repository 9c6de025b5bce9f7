# fruitguard/errors.py
from __future__ import annotations


class FruitGuardError(Exception):
    """Base class for every error raised by the classification core."""


class DecodeError(FruitGuardError):
    """
    Raised when image bytes cannot be decoded (corrupt or unsupported format).
    Callers treat it as "no usable image" and reject that single input.
    """


class ModelUnavailable(FruitGuardError):
    """
    No usable trained model was found after trying every storage backend.
    Only recoverable by training; never retried silently.
    """


class TrainingError(FruitGuardError):
    """A training run failed. The previously persisted model is untouched."""

    def __init__(self, message: str, example_id: str | None = None):
        super().__init__(message)
        self.example_id = example_id


class StorageError(FruitGuardError):
    """A single storage backend failed to read or write an artifact."""


class ArtifactMismatch(StorageError):
    """Stored weights, vocabulary or format do not match the stored architecture."""
