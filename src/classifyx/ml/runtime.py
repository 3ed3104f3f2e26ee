"""Tensor-execution runtime capability.

The loader hands a :class:`LoadDescriptor` to a :class:`ModelRuntime` and never
touches engine internals. :class:`TensorFlowRuntime` is the bundled
implementation; it needs the ``tensorflow`` extra.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np

from classifyx.ml.weights import decode_weights
from classifyx.utils.optional_deps import require

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from types import ModuleType

    from numpy.typing import NDArray

    from classifyx.config import Settings
    from classifyx.ml.weights import WeightSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadDescriptor:
    """Everything a runtime needs to build a model from an archive."""

    model_topology: Any
    format: str | None
    generated_by: str | None
    converted_by: str | None
    weight_specs: tuple[WeightSpec, ...]
    weight_data: bytes = field(repr=False)
    user_defined_metadata: Mapping[str, Any] | None = None


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelRuntime(Protocol):
    """Protocol for the engine that builds and runs models."""

    def load_layers_model(self, descriptor: LoadDescriptor) -> Any:
        """Build a layered (Sequential / functional) model or raise."""
        ...

    def load_graph_model(self, descriptor: LoadDescriptor) -> Any:
        """Build a raw computation-graph model or raise."""
        ...

    def input_shape(self, model: Any) -> Sequence[int | None] | None:
        """Return the first input's declared shape for a layered model."""
        ...

    def predict(self, model: Any, batch: NDArray[np.float32]) -> Any:
        """Run a layered model on a batch."""
        ...

    def execute(self, model: Any, batch: NDArray[np.float32]) -> Any:
        """Run a graph model on a batch."""
        ...


# ---------------------------------------------------------------------------
# TensorFlow implementation
# ---------------------------------------------------------------------------


@dataclass
class _GraphModel:
    function: Any
    inputs: list[str]
    outputs: list[str]


_SKIP_OUTPUT_OPS = {"Const", "NoOp", "Placeholder", "Assert"}


class TensorFlowRuntime:
    """Builds TF.js-exported models with TensorFlow."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._tf: ModuleType | None = None
        self._lock = threading.Lock()

    # -- Public API ---------------------------------------------------------

    def load_layers_model(self, descriptor: LoadDescriptor) -> Any:
        """Rebuild a Keras model from its JSON config and assign manifest weights."""
        tf = self._import()
        topology = descriptor.model_topology
        if not isinstance(topology, dict):
            raise ValueError("modelTopology is not a Keras model config")
        if descriptor.format == "graph-model":
            raise ValueError("Artifact declares format 'graph-model'")

        model_config = topology.get("model_config", topology)
        if "class_name" not in model_config:
            raise ValueError("modelTopology has no Keras class_name")

        model = tf.keras.models.model_from_json(json.dumps(model_config))
        arrays = decode_weights(descriptor.weight_specs, descriptor.weight_data)
        model.set_weights(self._order_for_model(model, arrays))
        return model

    def load_graph_model(self, descriptor: LoadDescriptor) -> _GraphModel:
        """Import a GraphDef from JSON, binding manifest weights into its Const nodes."""
        tf = self._import()
        json_format = require("google.protobuf.json_format", purpose="parsing graph models")

        topology = descriptor.model_topology
        if not isinstance(topology, dict) or "node" not in topology:
            raise ValueError("modelTopology is not a GraphDef")

        graph_def = tf.compat.v1.GraphDef()
        json_format.ParseDict(topology, graph_def, ignore_unknown_fields=True)

        arrays = decode_weights(descriptor.weight_specs, descriptor.weight_data)
        for node in graph_def.node:
            array = arrays.get(node.name)
            if array is not None:
                node.attr["value"].tensor.CopyFrom(tf.make_tensor_proto(array))

        inputs = [node.name for node in graph_def.node if node.op == "Placeholder"]
        if not inputs:
            raise ValueError("Graph has no Placeholder input")
        consumed = {name.split(":")[0].lstrip("^") for node in graph_def.node for name in node.input}
        outputs = [node.name for node in graph_def.node if node.name not in consumed and node.op not in _SKIP_OUTPUT_OPS]
        if not outputs:
            raise ValueError("Graph has no output node")

        def _import_graph() -> None:
            tf.compat.v1.import_graph_def(graph_def, name="")

        wrapped = tf.compat.v1.wrap_function(_import_graph, [])
        function = wrapped.prune(
            feeds=[wrapped.graph.get_tensor_by_name(f"{inputs[0]}:0")],
            fetches=[wrapped.graph.get_tensor_by_name(f"{name}:0") for name in outputs],
        )
        return _GraphModel(function=function, inputs=inputs, outputs=outputs)

    def input_shape(self, model: Any) -> Sequence[int | None] | None:
        inputs = getattr(model, "inputs", None)
        if not inputs:
            return None
        shape = inputs[0].shape
        return [None if dim is None else int(dim) for dim in shape]

    def predict(self, model: Any, batch: NDArray[np.float32]) -> Any:
        return model.predict(batch, verbose=0)

    def execute(self, model: _GraphModel, batch: NDArray[np.float32]) -> list[NDArray[Any]]:
        tf = self._import()
        outputs = model.function(tf.constant(batch))
        return [np.asarray(output) for output in outputs]

    # -- Internal -----------------------------------------------------------

    def _import(self) -> ModuleType:
        with self._lock:
            if self._tf is None:
                tf = require("tensorflow", extra="tensorflow", purpose="running TF.js models")
                self._configure_threads(tf)
                self._tf = tf
            return self._tf

    def _configure_threads(self, tf: ModuleType) -> None:
        try:
            if self._settings.intra_op_threads:
                tf.config.threading.set_intra_op_parallelism_threads(self._settings.intra_op_threads)
            if self._settings.inter_op_threads:
                tf.config.threading.set_inter_op_parallelism_threads(self._settings.inter_op_threads)
        except RuntimeError:
            # TensorFlow was already initialized by someone else.
            logger.warning("TensorFlow thread settings ignored: runtime already initialized")

    @staticmethod
    def _order_for_model(model: Any, arrays: dict[str, NDArray[Any]]) -> list[NDArray[Any]]:
        """Match manifest arrays to ``model.weights`` by name, else by position."""
        names = [_weight_path(weight) for weight in model.weights]
        if all(name in arrays for name in names) and len(names) == len(arrays):
            return [arrays[name] for name in names]
        return list(arrays.values())


def _weight_path(weight: Any) -> str:
    name = getattr(weight, "path", None) or weight.name
    return name.split(":")[0]
