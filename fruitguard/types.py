# fruitguard/types.py
"""
Records passed across the core's boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass
class TrainingExample:
    """One operator-labeled upload. ``None`` labels mean "unlabeled"."""

    example_id: str
    image: bytes
    fruit_type: Optional[str] = None
    is_toxic: Optional[bool] = None

    @property
    def is_labeled(self) -> bool:
        return self.fruit_type is not None and self.is_toxic is not None


@dataclass(frozen=True)
class TrainingProgress:
    epoch: int
    average_loss: float


@dataclass(frozen=True)
class FruitTypePrediction:
    label: str
    confidence: float
    probabilities: dict[str, float]


@dataclass(frozen=True)
class ToxicityPrediction:
    verdict: str
    probability: float
    confidence: float
    risk_tier: str


@dataclass(frozen=True)
class PredictionResult:
    fruit_type: FruitTypePrediction
    toxicity: ToxicityPrediction
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "fruit_type": {
                "label": self.fruit_type.label,
                "confidence": self.fruit_type.confidence,
                "probabilities": dict(self.fruit_type.probabilities),
            },
            "toxicity": {
                "verdict": self.toxicity.verdict,
                "probability": self.toxicity.probability,
                "confidence": self.toxicity.confidence,
                "risk_tier": self.toxicity.risk_tier,
            },
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class FruitModel:
    """
    A trained (or training) model: graph description, Keras network, and the
    vocabulary its softmax head is keyed to.
    """

    architecture: Any  # fruitguard.architecture.ArchitectureSpec
    network: Any  # tf.keras.Model
    vocabulary: tuple[str, ...]
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def input_size(self) -> tuple[int, int]:
        return self.architecture.input_size
