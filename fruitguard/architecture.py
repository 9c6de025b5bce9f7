# ======================================================
# fruitguard/architecture.py - dual-head CNN
# ======================================================
"""
The network is described as a tagged graph (ordered nodes + edges) that does
not depend on Keras. ``build_network`` turns that description into a
``tf.keras.Model``; the same description is what gets persisted next to the
weights, so a stored model can be rebuilt and checked layer by layer.

Shape of the graph::

    image
      -> conv_1 (32) -> pool_1 -> conv_2 (64) -> pool_2 -> conv_3 (128) -> pool_3
      -> flatten -> hidden (dense, relu) -> dropout
          |-> fruit_type (dense, softmax, len(vocabulary))
          '-> toxicity   (dense, sigmoid, 1)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tensorflow.keras import layers, models
from tensorflow.keras.optimizers import Adam

from fruitguard.config import DROPOUT_RATE, HIDDEN_UNITS, IMG_SIZE, TrainingConfig

NODE_KINDS = ("input", "conv2d", "max_pool2d", "flatten", "dense", "dropout")
WEIGHTED_KINDS = ("conv2d", "dense")

FRUIT_TYPE_HEAD = "fruit_type"
TOXICITY_HEAD = "toxicity"
CONV_FILTERS = (32, 64, 128)


@dataclass(frozen=True)
class Node:
    name: str
    kind: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ArchitectureSpec:
    nodes: tuple[Node, ...]
    edges: tuple[tuple[str, str], ...]
    outputs: tuple[str, ...]

    @property
    def input_size(self) -> tuple[int, int]:
        shape = self.node("image").params["shape"]
        return int(shape[0]), int(shape[1])

    def node(self, name: str) -> Node:
        for n in self.nodes:
            if n.name == name:
                return n
        raise KeyError(name)

    def parents(self, name: str) -> list[str]:
        return [src for src, dst in self.edges if dst == name]

    def weighted_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.kind in WEIGHTED_KINDS]

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [{"name": n.name, "kind": n.kind, "params": n.params} for n in self.nodes],
            "edges": [list(e) for e in self.edges],
            "outputs": list(self.outputs),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArchitectureSpec":
        nodes = []
        for raw in data["nodes"]:
            if raw["kind"] not in NODE_KINDS:
                raise ValueError(f"Unknown node kind: {raw['kind']!r}")
            params = dict(raw.get("params", {}))
            # JSON turns tuples into lists
            for key in ("shape", "kernel_size", "pool_size"):
                if key in params:
                    params[key] = tuple(params[key])
            nodes.append(Node(raw["name"], raw["kind"], params))
        spec = cls(
            nodes=tuple(nodes),
            edges=tuple((src, dst) for src, dst in data["edges"]),
            outputs=tuple(data["outputs"]),
        )
        spec.validate()
        return spec

    def validate(self) -> None:
        names = [n.name for n in self.nodes]
        if len(set(names)) != len(names):
            raise ValueError("Duplicate node names in architecture")
        seen: set[str] = set()
        for n in self.nodes:
            parents = self.parents(n.name)
            if n.kind == "input":
                if parents:
                    raise ValueError(f"Input node {n.name!r} has parents")
            elif len(parents) != 1:
                raise ValueError(f"Node {n.name!r} must have exactly one parent")
            elif parents[0] not in seen:
                raise ValueError(f"Node {n.name!r} appears before its parent {parents[0]!r}")
            seen.add(n.name)
        for out in self.outputs:
            if out not in seen:
                raise ValueError(f"Unknown output node {out!r}")


def build_architecture(
    vocabulary,
    input_size=IMG_SIZE,
    hidden_units: int = HIDDEN_UNITS,
    dropout_rate: float = DROPOUT_RATE,
) -> ArchitectureSpec:
    if not vocabulary:
        raise ValueError("Vocabulary must not be empty")

    height, width = input_size
    nodes = [Node("image", "input", {"shape": (height, width, 3)})]
    edges = []
    prev = "image"

    for i, filters in enumerate(CONV_FILTERS, start=1):
        conv, pool = f"conv_{i}", f"pool_{i}"
        nodes.append(Node(conv, "conv2d", {"filters": filters, "kernel_size": (3, 3), "activation": "relu"}))
        nodes.append(Node(pool, "max_pool2d", {"pool_size": (2, 2)}))
        edges += [(prev, conv), (conv, pool)]
        prev = pool

    nodes += [
        Node("flatten", "flatten"),
        Node("hidden", "dense", {"units": hidden_units, "activation": "relu"}),
        Node("dropout", "dropout", {"rate": dropout_rate}),
        Node(FRUIT_TYPE_HEAD, "dense", {"units": len(vocabulary), "activation": "softmax"}),
        Node(TOXICITY_HEAD, "dense", {"units": 1, "activation": "sigmoid"}),
    ]
    edges += [
        (prev, "flatten"),
        ("flatten", "hidden"),
        ("hidden", "dropout"),
        # both heads branch off the shared trunk
        ("dropout", FRUIT_TYPE_HEAD),
        ("dropout", TOXICITY_HEAD),
    ]

    spec = ArchitectureSpec(tuple(nodes), tuple(edges), (FRUIT_TYPE_HEAD, TOXICITY_HEAD))
    spec.validate()
    return spec


def _make_layer(node: Node):
    p = node.params
    if node.kind == "conv2d":
        return layers.Conv2D(p["filters"], p["kernel_size"], activation=p["activation"], name=node.name)
    if node.kind == "max_pool2d":
        return layers.MaxPooling2D(pool_size=p["pool_size"], name=node.name)
    if node.kind == "flatten":
        return layers.Flatten(name=node.name)
    if node.kind == "dense":
        return layers.Dense(p["units"], activation=p["activation"], name=node.name)
    if node.kind == "dropout":
        return layers.Dropout(p["rate"], name=node.name)
    raise ValueError(f"Unsupported node kind: {node.kind!r}")


def build_network(spec: ArchitectureSpec):
    """Materialize ``spec`` as an untrained tf.keras functional model."""
    tensors = {}
    inputs = []
    for node in spec.nodes:
        if node.kind == "input":
            t = layers.Input(shape=node.params["shape"], name=node.name)
            inputs.append(t)
        else:
            (parent,) = spec.parents(node.name)
            t = _make_layer(node)(tensors[parent])
        tensors[node.name] = t

    outputs = [tensors[name] for name in spec.outputs]
    if len(inputs) == 1:
        inputs = inputs[0]
    return models.Model(inputs, outputs, name="fruitguard_dual_head_cnn")


def compile_network(network, config: TrainingConfig = TrainingConfig()):
    """Combined loss = weighted sum of the two head losses."""
    network.compile(
        optimizer=Adam(config.learning_rate),
        loss=["categorical_crossentropy", "binary_crossentropy"],
        loss_weights=[config.fruit_type_loss_weight, config.toxicity_loss_weight],
    )
    return network
