# tests/conftest.py
from __future__ import annotations

import io

import pytest
from loguru import logger
from PIL import Image

from fruitguard.config import FRUIT_TYPES, TrainingConfig
from fruitguard.store import MemoryBackend, ModelStore
from fruitguard.training import Trainer
from fruitguard.types import TrainingExample

# Small network so the suite runs on CPU in seconds.
SMALL = dict(input_size=(32, 32), hidden_units=8)


@pytest.fixture(autouse=True)
def disable_file_logger():
    logger.remove()
    logger.add(lambda msg: None)
    yield


def make_image(color=(200, 30, 30), size=(40, 30), fmt="PNG", mode="RGB") -> bytes:
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def image_factory():
    return make_image


@pytest.fixture
def image_bytes() -> bytes:
    # two-tone so resizing has something to do
    img = Image.new("RGB", (64, 48), (250, 200, 10))
    img.paste((20, 120, 40), (0, 0, 32, 48))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def memory_store() -> ModelStore:
    return ModelStore([MemoryBackend("primary"), MemoryBackend("secondary")], vocabulary=FRUIT_TYPES)


@pytest.fixture
def labeled_examples() -> list[TrainingExample]:
    colors = [(220, 30, 30), (250, 220, 40), (250, 150, 20), (90, 20, 120), (230, 20, 60)]
    return [
        TrainingExample(
            example_id=f"img_{i}.png",
            image=make_image(color),
            fruit_type=FRUIT_TYPES[i],
            is_toxic=bool(i % 2),
        )
        for i, color in enumerate(colors)
    ]


@pytest.fixture
def make_trainer():
    def _make(store, **config_kwargs) -> Trainer:
        config_kwargs.setdefault("epochs", 2)
        config_kwargs.setdefault("batch_size", 2)
        config_kwargs.setdefault("seed", 7)
        return Trainer(store.vocabulary, store, TrainingConfig(**config_kwargs), **SMALL)

    return _make


@pytest.fixture
def fresh_model(memory_store, make_trainer):
    """Randomly initialized small model (not trained, not saved)."""
    return make_trainer(memory_store).create_model()
