# ======================================================
# fruitguard/store.py - save / load models across backends
# ======================================================
"""
A stored model ("artifact") is three documents written and read together:

- ``architecture.json``: format version, vocabulary and the graph description
- ``weights.npz``: flat weight payload keyed ``"<layer>/<index>"``
- ``metadata.json``: model name, version, training-set size, last update

Backends are tried in the order given. ``load`` falls through to the next
backend on any failure and raises ModelUnavailable once every backend has
failed. ``save`` writes to all backends; only the first one is mandatory.
"""

from __future__ import annotations

import io
import json
import shutil
import uuid
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

import numpy as np
from loguru import logger

from fruitguard.architecture import FRUIT_TYPE_HEAD, ArchitectureSpec, build_network
from fruitguard.errors import ArtifactMismatch, ModelUnavailable, StorageError
from fruitguard.types import FruitModel

ARTIFACT_FORMAT_VERSION = 1
ARCHITECTURE_FILE = "architecture.json"
WEIGHTS_FILE = "weights.npz"
METADATA_FILE = "metadata.json"


@dataclass
class ArtifactBlob:
    architecture: dict[str, Any]
    weights: bytes
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StorageHandle:
    locations: dict[str, str]
    failures: dict[str, str]

    @property
    def degraded(self) -> bool:
        return bool(self.failures)


# -----------------------------
# Serialization
# -----------------------------
def serialize_model(model: FruitModel) -> ArtifactBlob:
    weights = {}
    for node in model.architecture.weighted_nodes():
        layer = model.network.get_layer(node.name)
        for i, w in enumerate(layer.get_weights()):
            weights[f"{node.name}/{i}"] = np.asarray(w)

    buffer = io.BytesIO()
    np.savez(buffer, **weights)

    architecture = {
        "format_version": ARTIFACT_FORMAT_VERSION,
        "vocabulary": list(model.vocabulary),
        "graph": model.architecture.to_dict(),
    }
    return ArtifactBlob(architecture, buffer.getvalue(), dict(model.metadata))


def deserialize_model(blob: ArtifactBlob, vocabulary: Sequence[str]) -> FruitModel:
    """Rebuild a model from ``blob``. Any mismatch raises ArtifactMismatch."""
    arch = blob.architecture
    if not isinstance(arch, dict):
        raise ArtifactMismatch("Architecture description is not an object")
    version = arch.get("format_version")
    if version != ARTIFACT_FORMAT_VERSION:
        raise ArtifactMismatch(f"Unsupported artifact format version: {version!r}")

    stored_vocab = arch.get("vocabulary")
    if not isinstance(stored_vocab, list) or not all(isinstance(v, str) for v in stored_vocab):
        raise ArtifactMismatch(f"Stored vocabulary is not a list of labels: {stored_vocab!r}")
    stored_vocab = tuple(stored_vocab)
    if stored_vocab != tuple(vocabulary):
        raise ArtifactMismatch(f"Vocabulary mismatch: stored {list(stored_vocab)}, expected {list(vocabulary)}")

    if not isinstance(blob.metadata, dict):
        raise ArtifactMismatch("Model metadata is not an object")

    try:
        spec = ArchitectureSpec.from_dict(arch["graph"])
    except (KeyError, TypeError, ValueError) as e:
        raise ArtifactMismatch(f"Invalid architecture description: {e}") from e

    try:
        head_units = spec.node(FRUIT_TYPE_HEAD).params.get("units")
    except KeyError as e:
        raise ArtifactMismatch(f"Architecture has no {FRUIT_TYPE_HEAD!r} head") from e
    if head_units != len(stored_vocab):
        raise ArtifactMismatch("Fruit-type head width does not match vocabulary size")

    try:
        with np.load(io.BytesIO(blob.weights), allow_pickle=False) as npz:
            payload = {key: npz[key] for key in npz.files}
    except (OSError, ValueError, TypeError, AttributeError, zipfile.BadZipFile) as e:
        raise StorageError(f"Corrupt weight payload: {e}") from e

    # node params are only read by Keras here, so bad values surface as builtin errors
    try:
        network = _restore_network(spec, payload)
    except (KeyError, TypeError, ValueError) as e:
        raise ArtifactMismatch(f"Could not rebuild network from artifact: {e!r}") from e

    return FruitModel(spec, network, stored_vocab, dict(blob.metadata))


def _restore_network(spec: ArchitectureSpec, payload: dict[str, np.ndarray]):
    network = build_network(spec)
    expected_keys = set()
    for node in spec.weighted_nodes():
        layer = network.get_layer(node.name)
        current = layer.get_weights()
        keys = [f"{node.name}/{i}" for i in range(len(current))]
        expected_keys.update(keys)

        missing = [k for k in keys if k not in payload]
        if missing:
            raise ArtifactMismatch(f"Missing weights: {missing}")
        arrays = [payload[k] for k in keys]
        for key, ref, arr in zip(keys, current, arrays):
            if ref.shape != arr.shape:
                raise ArtifactMismatch(f"Shape mismatch for {key}: stored {arr.shape}, expected {ref.shape}")
        layer.set_weights(arrays)

    extra = set(payload) - expected_keys
    if extra:
        raise ArtifactMismatch(f"Unexpected weights: {sorted(extra)}")
    return network


# -----------------------------
# Backends
# -----------------------------
class StorageBackend(ABC):
    name: str

    @abstractmethod
    def write(self, blob: ArtifactBlob) -> str:
        """Persist ``blob``; return a description of where it went."""

    @abstractmethod
    def read(self) -> ArtifactBlob:
        """Return the stored blob or raise StorageError."""


class MemoryBackend(StorageBackend):
    """In-process store. Survives model swaps, not process restarts."""

    def __init__(self, name: str = "memory"):
        self.name = name
        self._blob = None

    def write(self, blob: ArtifactBlob) -> str:
        self._blob = ArtifactBlob(
            json.loads(json.dumps(blob.architecture)),
            bytes(blob.weights),
            json.loads(json.dumps(blob.metadata)),
        )
        return f"memory://{self.name}"

    def read(self) -> ArtifactBlob:
        if self._blob is None:
            raise StorageError(f"[{self.name}] no model stored")
        return self._blob

    def clear(self) -> None:
        self._blob = None


class DirectoryBackend(StorageBackend):
    """
    Artifact directory on the local filesystem. Writes go to a temporary
    sibling directory that replaces the previous artifact only once complete.
    """

    ARTIFACT_DIRNAME = "fruitguard_model"

    def __init__(self, root, name: str | None = None):
        self.root = Path(root)
        self.name = name or str(self.root)

    @property
    def artifact_dir(self) -> Path:
        return self.root / self.ARTIFACT_DIRNAME

    def write(self, blob: ArtifactBlob) -> str:
        tmp_dir = self.root / f".tmp-{uuid.uuid4().hex}"
        old_dir = self.root / f".old-{uuid.uuid4().hex}"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_dir.mkdir()
            (tmp_dir / ARCHITECTURE_FILE).write_text(json.dumps(blob.architecture, indent=2))
            (tmp_dir / WEIGHTS_FILE).write_bytes(blob.weights)
            (tmp_dir / METADATA_FILE).write_text(json.dumps(blob.metadata, indent=2))

            target = self.artifact_dir
            if target.exists():
                target.rename(old_dir)
            tmp_dir.rename(target)
        except OSError as e:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            if old_dir.exists() and not self.artifact_dir.exists():
                old_dir.rename(self.artifact_dir)
            raise StorageError(f"[{self.name}] write failed: {e}") from e

        shutil.rmtree(old_dir, ignore_errors=True)
        return str(self.artifact_dir)

    def read(self) -> ArtifactBlob:
        target = self.artifact_dir
        if not target.is_dir():
            raise StorageError(f"[{self.name}] no model at {target}")
        try:
            architecture = json.loads((target / ARCHITECTURE_FILE).read_text())
            weights = (target / WEIGHTS_FILE).read_bytes()
            metadata_path = target / METADATA_FILE
            metadata = json.loads(metadata_path.read_text()) if metadata_path.exists() else {}
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"[{self.name}] unreadable artifact: {e}") from e
        if not isinstance(architecture, dict):
            raise StorageError(f"[{self.name}] architecture.json is not an object")
        return ArtifactBlob(architecture, weights, metadata)


# -----------------------------
# Store
# -----------------------------
class ModelStore:
    def __init__(self, backends: Sequence[StorageBackend], vocabulary: Sequence[str]):
        if not backends:
            raise ValueError("ModelStore needs at least one backend")
        self.backends = list(backends)
        self.vocabulary = tuple(vocabulary)

    def save(self, model: FruitModel) -> StorageHandle:
        blob = serialize_model(model)
        primary, *secondary = self.backends

        # primary failure propagates
        locations = {primary.name: primary.write(blob)}
        logger.info(f"Model saved to {primary.name} ({locations[primary.name]})")

        failures = {}
        for backend in secondary:
            try:
                locations[backend.name] = backend.write(blob)
                logger.info(f"Model saved to {backend.name} ({locations[backend.name]})")
            except StorageError as e:
                failures[backend.name] = str(e)
                logger.warning(f"Degraded persistence, secondary backend failed: {e}")

        return StorageHandle(locations, failures)

    def load(self) -> FruitModel:
        reasons = []
        for backend in self.backends:
            try:
                model = deserialize_model(backend.read(), self.vocabulary)
            except StorageError as e:
                logger.debug(f"Backend {backend.name} unusable, trying next: {e}")
                reasons.append(f"{backend.name}: {e}")
                continue
            logger.info(f"Model loaded from {backend.name}")
            return model

        raise ModelUnavailable("No trained model available (" + "; ".join(reasons) + ")")
