"""Fruit species and toxicity classification core."""

from fruitguard.config import FRUIT_TYPES, TrainingConfig, default_store
from fruitguard.errors import (
    ArtifactMismatch,
    DecodeError,
    FruitGuardError,
    ModelUnavailable,
    StorageError,
    TrainingError,
)
from fruitguard.inference import InferenceEngine, ModelSlot, risk_tier
from fruitguard.preprocessing import preprocess
from fruitguard.store import DirectoryBackend, MemoryBackend, ModelStore, StorageHandle
from fruitguard.training import Trainer, train
from fruitguard.types import (
    FruitModel,
    PredictionResult,
    TrainingExample,
    TrainingProgress,
)

__all__ = [
    "FRUIT_TYPES",
    "TrainingConfig",
    "default_store",
    "FruitGuardError",
    "DecodeError",
    "ModelUnavailable",
    "TrainingError",
    "StorageError",
    "ArtifactMismatch",
    "InferenceEngine",
    "ModelSlot",
    "risk_tier",
    "preprocess",
    "ModelStore",
    "StorageHandle",
    "DirectoryBackend",
    "MemoryBackend",
    "Trainer",
    "train",
    "FruitModel",
    "PredictionResult",
    "TrainingExample",
    "TrainingProgress",
]
