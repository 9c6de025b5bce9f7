import math

import numpy as np
import pytest

from fruitguard.config import FRUIT_TYPES, TrainingConfig
from fruitguard.errors import TrainingError
from fruitguard.store import DirectoryBackend, MemoryBackend, ModelStore
from fruitguard.training import Trainer, batch_order, encode_labels, validate_examples
from fruitguard.types import TrainingExample


def _no_model(self):
    raise AssertionError("model created before validation finished")


@pytest.mark.parametrize(
    "fruit_type, is_toxic",
    [(None, True), ("apple", None), (None, None)],
)
def test_unlabeled_example_rejected_before_training(
    monkeypatch, memory_store, make_trainer, labeled_examples, fruit_type, is_toxic
):
    labeled_examples[2] = TrainingExample("bad.png", labeled_examples[2].image, fruit_type, is_toxic)
    monkeypatch.setattr(Trainer, "create_model", _no_model)

    with pytest.raises(TrainingError) as exc:
        make_trainer(memory_store).train(labeled_examples)

    assert exc.value.example_id == "bad.png"
    assert all(b._blob is None for b in memory_store.backends)


def test_unknown_fruit_type_rejected(labeled_examples):
    labeled_examples[0].fruit_type = "durian"
    with pytest.raises(TrainingError) as exc:
        validate_examples(labeled_examples, FRUIT_TYPES)
    assert exc.value.example_id == "img_0.png"


def test_empty_training_set_rejected(memory_store, make_trainer):
    with pytest.raises(TrainingError):
        make_trainer(memory_store).train([])


def test_progress_reported_once_per_epoch(memory_store, make_trainer, labeled_examples):
    progress = []
    make_trainer(memory_store, epochs=3, batch_size=2).train(labeled_examples, progress.append)

    assert [p.epoch for p in progress] == [1, 2, 3]
    assert all(math.isfinite(p.average_loss) and p.average_loss > 0 for p in progress)


def test_batches_follow_given_order(monkeypatch, memory_store, make_trainer, labeled_examples):
    seen = []
    real = Trainer._preprocess_batch

    def spy(self, batch):
        seen.append([ex.example_id for ex in batch])
        return real(self, batch)

    monkeypatch.setattr(Trainer, "_preprocess_batch", spy)
    make_trainer(memory_store, epochs=1, batch_size=2).train(labeled_examples)

    assert seen == [["img_0.png", "img_1.png"], ["img_2.png", "img_3.png"], ["img_4.png"]]


def test_successful_run_is_persisted(memory_store, make_trainer, labeled_examples):
    model = make_trainer(memory_store).train(labeled_examples)

    assert model.metadata["trained_on"] == len(labeled_examples)
    loaded = memory_store.load()
    assert loaded.vocabulary == FRUIT_TYPES
    assert loaded.metadata["version"] == model.metadata["version"]


def test_decode_failure_aborts_run_and_keeps_prior_model(memory_store, make_trainer, labeled_examples):
    make_trainer(memory_store, epochs=1).train(labeled_examples)
    before = memory_store.backends[0]._blob.weights

    labeled_examples[3] = TrainingExample("corrupt.jpg", b"garbage", "grape", False)
    with pytest.raises(TrainingError) as exc:
        make_trainer(memory_store, epochs=1).train(labeled_examples)

    assert exc.value.example_id == "corrupt.jpg"
    assert memory_store.backends[0]._blob.weights == before


def test_primary_save_failure_fails_run(tmp_path, make_trainer, labeled_examples):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("")
    store = ModelStore([DirectoryBackend(blocker / "models"), MemoryBackend()], FRUIT_TYPES)

    with pytest.raises(TrainingError):
        make_trainer(store, epochs=1).train(labeled_examples)
    assert store.backends[1]._blob is None


def test_unshuffled_order_is_identity():
    np.testing.assert_array_equal(batch_order(5, TrainingConfig(), epoch=0), np.arange(5))


def test_seeded_shuffle_is_reproducible_permutation():
    cfg = TrainingConfig(shuffle=True, seed=3)
    a, b = batch_order(10, cfg, epoch=1), batch_order(10, cfg, epoch=1)
    np.testing.assert_array_equal(a, b)
    assert sorted(a.tolist()) == list(range(10))


def test_encode_labels(labeled_examples):
    fruit, toxic = encode_labels(labeled_examples[:3], FRUIT_TYPES)
    assert fruit.shape == (3, len(FRUIT_TYPES))
    np.testing.assert_array_equal(fruit.argmax(axis=1), [0, 1, 2])
    np.testing.assert_array_equal(fruit.sum(axis=1), [1, 1, 1])
    np.testing.assert_array_equal(toxic, [[0.0], [1.0], [0.0]])


@pytest.mark.parametrize("kwargs", [{"epochs": 0}, {"batch_size": 0}, {"toxicity_loss_weight": -1.0}])
def test_invalid_config_rejected(kwargs):
    with pytest.raises(ValueError):
        TrainingConfig(**kwargs)
