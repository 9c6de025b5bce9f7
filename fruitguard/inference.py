# ======================================================
# fruitguard/inference.py - image bytes -> risk-tiered verdict
# ======================================================

from __future__ import annotations

import threading
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from fruitguard.config import (
    HIGH_RISK_THRESHOLD,
    NON_TOXIC,
    TOXIC,
    TOXIC_THRESHOLD,
    VERY_SAFE_THRESHOLD,
)
from fruitguard.errors import ModelUnavailable
from fruitguard.preprocessing import load_image_exif_safe, to_tensor
from fruitguard.store import ModelStore
from fruitguard.types import (
    FruitModel,
    FruitTypePrediction,
    PredictionResult,
    ToxicityPrediction,
)


def risk_tier(p: float) -> str:
    """Four-level banding of the raw toxic probability."""
    if p > HIGH_RISK_THRESHOLD:
        return "High Risk"
    if p > TOXIC_THRESHOLD:
        return "Moderate Risk"
    if p < VERY_SAFE_THRESHOLD:
        return "Very Safe"
    return "Safe"


def toxicity_from_probability(p: float) -> ToxicityPrediction:
    toxic = p > TOXIC_THRESHOLD
    return ToxicityPrediction(
        verdict=TOXIC if toxic else NON_TOXIC,
        probability=p,
        confidence=p if toxic else 1.0 - p,
        risk_tier=risk_tier(p),
    )


def fruit_type_from_softmax(probs: np.ndarray, vocabulary: Sequence[str]) -> FruitTypePrediction:
    idx = int(np.argmax(probs))
    return FruitTypePrediction(
        label=vocabulary[idx],
        confidence=float(probs[idx]),
        probabilities={label: float(p) for label, p in zip(vocabulary, probs)},
    )


class ModelSlot:
    """
    Process-wide holder for the serving model.

    uninitialized -> loaded -> replaced. The held model is never mutated;
    replacing it swaps the reference, so readers keep the snapshot they got.
    """

    def __init__(self):
        self._model: Optional[FruitModel] = None
        self._lock = threading.Lock()

    def get(self) -> Optional[FruitModel]:
        return self._model

    def get_or_load(self, store: ModelStore) -> FruitModel:
        model = self._model
        if model is not None:
            return model
        with self._lock:
            if self._model is None:
                self._model = store.load()
            return self._model

    def replace(self, model: FruitModel) -> None:
        with self._lock:
            self._model = model

    def clear(self) -> None:
        with self._lock:
            self._model = None


class InferenceEngine:
    def __init__(self, store: ModelStore, slot: Optional[ModelSlot] = None):
        self.store = store
        self.slot = slot or ModelSlot()

    @property
    def vocabulary(self) -> tuple[str, ...]:
        return self.store.vocabulary

    def is_ready(self) -> bool:
        return self.slot.get() is not None

    def model(self) -> FruitModel:
        """Cached model, loading it on first use. Never trains."""
        try:
            return self.slot.get_or_load(self.store)
        except ModelUnavailable:
            logger.warning("Prediction requested but no trained model is available")
            raise

    def replace(self, model: FruitModel) -> None:
        """Swap in a freshly trained model."""
        if tuple(model.vocabulary) != self.vocabulary:
            raise ValueError("Replacement model was trained on a different vocabulary")
        self.slot.replace(model)
        logger.info("Serving model replaced")

    def reload(self) -> None:
        """Drop the cached model; the next prediction reloads from the store."""
        self.slot.clear()

    def refresh(self) -> FruitModel:
        """
        Load the latest stored model and swap it in. If loading fails the
        current model keeps serving and ModelUnavailable propagates.
        """
        model = self.store.load()
        self.replace(model)
        return model

    def predict(self, image_bytes: bytes) -> PredictionResult:
        # malformed input is rejected before the model is resolved
        img = load_image_exif_safe(image_bytes)
        model = self.model()
        x = to_tensor(img, model.input_size)[np.newaxis, ...]

        fruit_out, toxic_out = model.network(x, training=False)
        probs = np.asarray(fruit_out)[0].astype(np.float64)
        p = float(np.asarray(toxic_out)[0, 0])
        del x, fruit_out, toxic_out

        return PredictionResult(
            fruit_type=fruit_type_from_softmax(probs, model.vocabulary),
            toxicity=toxicity_from_probability(p),
        )
