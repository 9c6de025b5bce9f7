# ======================================================
# fruitguard/training.py - mini-batch training of the dual-head CNN
# ======================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import numpy as np
import tensorflow as tf
from loguru import logger

from fruitguard.architecture import build_architecture, build_network, compile_network
from fruitguard.config import DROPOUT_RATE, HIDDEN_UNITS, IMG_SIZE, MODEL_NAME, TrainingConfig
from fruitguard.errors import DecodeError, StorageError, TrainingError
from fruitguard.preprocessing import preprocess
from fruitguard.store import ModelStore
from fruitguard.types import FruitModel, TrainingExample, TrainingProgress

ProgressCallback = Callable[[TrainingProgress], None]


def validate_examples(examples: Sequence[TrainingExample], vocabulary: Sequence[str]) -> None:
    """Reject the whole set if any example is unlabeled or out of vocabulary."""
    if not examples:
        raise TrainingError("No training examples provided")
    for ex in examples:
        if ex.fruit_type is None or ex.is_toxic is None:
            raise TrainingError(f"Example {ex.example_id!r} is not fully labeled", example_id=ex.example_id)
        if ex.fruit_type not in vocabulary:
            raise TrainingError(
                f"Example {ex.example_id!r} has unknown fruit type {ex.fruit_type!r}",
                example_id=ex.example_id,
            )


def batch_order(n: int, config: TrainingConfig, epoch: int) -> np.ndarray:
    """Example indices for one epoch: given order, or a seeded shuffle."""
    if not config.shuffle:
        return np.arange(n)
    seed = None if config.seed is None else config.seed + epoch
    return np.random.default_rng(seed).permutation(n)


def encode_labels(batch: Sequence[TrainingExample], vocabulary: Sequence[str]):
    """One-hot fruit labels (n, len(vocabulary)) and 0/1 toxicity labels (n, 1)."""
    index = {label: i for i, label in enumerate(vocabulary)}
    fruit = np.zeros((len(batch), len(vocabulary)), dtype=np.float32)
    for row, ex in enumerate(batch):
        fruit[row, index[ex.fruit_type]] = 1.0
    toxic = np.array([[1.0 if ex.is_toxic else 0.0] for ex in batch], dtype=np.float32)
    return fruit, toxic


class Trainer:
    """
    Trains a fresh dual-head model on labeled examples and persists it.

    One Trainer call owns its model for the whole run; concurrent runs must
    be serialized by the caller.
    """

    def __init__(
        self,
        vocabulary: Sequence[str],
        store: ModelStore,
        config: TrainingConfig = TrainingConfig(),
        input_size=IMG_SIZE,
        hidden_units: int = HIDDEN_UNITS,
        dropout_rate: float = DROPOUT_RATE,
    ):
        self.vocabulary = tuple(vocabulary)
        self.store = store
        self.config = config
        self.input_size = tuple(input_size)
        self.hidden_units = hidden_units
        self.dropout_rate = dropout_rate

    def create_model(self) -> FruitModel:
        if self.config.seed is not None:
            tf.keras.utils.set_random_seed(self.config.seed)
        spec = build_architecture(self.vocabulary, self.input_size, self.hidden_units, self.dropout_rate)
        network = compile_network(build_network(spec), self.config)
        return FruitModel(spec, network, self.vocabulary, {"model_name": MODEL_NAME})

    def _preprocess_batch(self, batch: Sequence[TrainingExample]) -> np.ndarray:
        xs = []
        for ex in batch:
            try:
                xs.append(preprocess(ex.image, self.input_size))
            except DecodeError as e:
                raise TrainingError(f"Preprocessing failed for {ex.example_id!r}: {e}", example_id=ex.example_id) from e
        return np.stack(xs, axis=0)

    def train(
        self,
        examples: Sequence[TrainingExample],
        on_progress: Optional[ProgressCallback] = None,
    ) -> FruitModel:
        examples = list(examples)
        validate_examples(examples, self.vocabulary)

        cfg = self.config
        model = self.create_model()
        logger.info(
            f"Starting training: {len(examples)} examples, epochs={cfg.epochs}, "
            f"batch_size={cfg.batch_size}, shuffle={cfg.shuffle}"
        )

        for epoch in range(cfg.epochs):
            order = batch_order(len(examples), cfg, epoch)
            total_loss = 0.0
            batch_count = 0

            for start in range(0, len(order), cfg.batch_size):
                batch = [examples[i] for i in order[start:start + cfg.batch_size]]
                x = self._preprocess_batch(batch)
                y_fruit, y_toxic = encode_labels(batch, self.vocabulary)

                logs = model.network.train_on_batch(x, [y_fruit, y_toxic], return_dict=True)
                total_loss += float(logs["loss"])
                batch_count += 1
                del x, y_fruit, y_toxic

            progress = TrainingProgress(epoch=epoch + 1, average_loss=total_loss / batch_count)
            logger.info(f"Epoch {progress.epoch}/{cfg.epochs} completed - Loss: {progress.average_loss:.4f}")
            if on_progress is not None:
                on_progress(progress)

        model.metadata.update(
            {
                "version": datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S"),
                "architecture": "3x(conv+pool) trunk, fruit_type softmax + toxicity sigmoid heads",
                "trained_on": len(examples),
                "epochs": cfg.epochs,
                "final_loss": progress.average_loss,
                "last_updated": datetime.now(timezone.utc).isoformat(),
            }
        )

        try:
            handle = self.store.save(model)
        except StorageError as e:
            raise TrainingError(f"Could not persist trained model: {e}") from e
        if handle.degraded:
            logger.warning(f"Model persisted with degraded storage: {handle.failures}")

        logger.info("Training complete.")
        return model


def train(
    examples: Sequence[TrainingExample],
    store: ModelStore,
    config: TrainingConfig = TrainingConfig(),
    on_progress: Optional[ProgressCallback] = None,
    **trainer_kwargs,
) -> FruitModel:
    """Functional entry point: train with ``store.vocabulary`` and persist."""
    trainer = Trainer(store.vocabulary, store, config, **trainer_kwargs)
    return trainer.train(examples, on_progress)
