# ======================================================
# fruitguard/config.py - paths, constants, training config
# ======================================================

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# -----------------------------
# Paths
# -----------------------------
ROOT_DIR = Path(__file__).resolve().parents[1]

MODELS_DIR = Path(os.environ.get("FRUITGUARD_MODEL_DIR", ROOT_DIR / "models"))
CACHE_DIR = Path(
    os.environ.get("FRUITGUARD_CACHE_DIR", Path.home() / ".cache" / "fruitguard" / "models")
)
FEEDBACK_IMG_DIR = Path(os.environ.get("FRUITGUARD_FEEDBACK_DIR", ROOT_DIR / "feedback_images"))
FEEDBACK_CSV = FEEDBACK_IMG_DIR / "feedback_log.csv"
LAST_RETRAIN_FILE = ROOT_DIR / "last_retrain.txt"

# -----------------------------
# Model constants
# -----------------------------
IMG_SIZE = (224, 224)
HIDDEN_UNITS = 256
DROPOUT_RATE = 0.5
MODEL_NAME = "fruitguard_dual_head_cnn"

# Order is the softmax class id. Changing it invalidates trained models.
FRUIT_TYPES = (
    "apple",
    "banana",
    "orange",
    "grape",
    "strawberry",
    "mango",
    "pear",
    "peach",
)

UNLABELED = "unlabeled"
TOXIC = "toxic"
NON_TOXIC = "non-toxic"

# -----------------------------
# Toxicity thresholds (fixed)
# -----------------------------
TOXIC_THRESHOLD = 0.5
HIGH_RISK_THRESHOLD = 0.8
VERY_SAFE_THRESHOLD = 0.2

# -----------------------------
# Retraining
# -----------------------------
MIN_NEW_FEEDBACK = 50


@dataclass(frozen=True)
class TrainingConfig:
    epochs: int = 10
    batch_size: int = 32
    shuffle: bool = False
    seed: Optional[int] = None
    learning_rate: float = 1e-3
    fruit_type_loss_weight: float = 1.0
    toxicity_loss_weight: float = 1.0

    def __post_init__(self):
        if self.epochs < 1:
            raise ValueError(f"epochs must be >= 1, got {self.epochs}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.fruit_type_loss_weight < 0 or self.toxicity_loss_weight < 0:
            raise ValueError("loss weights must be non-negative")


def default_store(vocabulary=FRUIT_TYPES):
    """Local cache first, durable models dir second."""
    from fruitguard.store import DirectoryBackend, ModelStore

    return ModelStore(
        [
            DirectoryBackend(CACHE_DIR, name="local-cache"),
            DirectoryBackend(MODELS_DIR, name="durable"),
        ],
        vocabulary=vocabulary,
    )
