"""Model loader: turn an archive bundle into a runnable model handle.

Artifacts come from one of two mutually exclusive export conventions. The
loader first asks the runtime for a layered model and falls back to a graph
model, so callers never need to know which one they uploaded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from classifyx.ml.errors import LoadError
from classifyx.ml.labels import resolve_labels
from classifyx.ml.runtime import LoadDescriptor
from classifyx.ml.weights import parse_topology, validate_weight_data, weight_specs

if TYPE_CHECKING:
    from collections.abc import Sequence

    from classifyx.ml.archive import ArchiveBundle
    from classifyx.ml.labels import LabelTable
    from classifyx.ml.runtime import ModelRuntime

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SIZE = 224


class ModelKind(StrEnum):
    LAYERS = "layers"
    GRAPH = "graph"


@dataclass(frozen=True)
class ModelHandle:
    """A loaded model plus what is needed to call it."""

    model: Any
    kind: ModelKind
    input_size: int
    labels: LabelTable | None
    format: str | None = None
    generated_by: str | None = None
    converted_by: str | None = None

    @property
    def label_count(self) -> int:
        return len(self.labels) if self.labels else 0


def input_size_from_shape(shape: Sequence[int | None] | None, default: int = DEFAULT_INPUT_SIZE) -> int:
    """Return ``min(height, width)`` from an NHWC input shape.

    Unknown, symbolic or non-positive dimensions fall back to ``default``.
    """
    if not shape or len(shape) < 3:
        return default
    height, width = shape[1], shape[2]
    if not _is_positive_dim(height) or not _is_positive_dim(width):
        return default
    return min(int(height), int(width))  # type: ignore[arg-type]


def _is_positive_dim(dim: object) -> bool:
    return isinstance(dim, int) and not isinstance(dim, bool) and dim > 0


class ModelLoader:
    """Builds :class:`ModelHandle` objects through a :class:`ModelRuntime`."""

    def __init__(self, runtime: ModelRuntime, default_input_size: int = DEFAULT_INPUT_SIZE) -> None:
        self._runtime = runtime
        self._default_input_size = default_input_size

    # -- Public API ---------------------------------------------------------

    def load(self, bundle: ArchiveBundle) -> ModelHandle:
        """Load a model from an inspected archive.

        Raises:
            FormatError: If the topology or weight manifest is malformed.
            LoadError: If neither the layers nor the graph path succeeds.
        """
        topology = parse_topology(bundle.topology.data)
        specs = weight_specs(topology)
        validate_weight_data(specs, bundle.weights.data)

        descriptor = LoadDescriptor(
            model_topology=topology.model_topology,
            format=topology.format,
            generated_by=topology.generated_by,
            converted_by=topology.converted_by,
            weight_specs=tuple(specs),
            weight_data=bundle.weights.data,
            user_defined_metadata=topology.user_defined_metadata,
        )

        model, kind, input_size = self._build(descriptor)
        labels = resolve_labels(topology, bundle)

        logger.info(
            "Loaded %s model (input %dx%d, %d weights, %s labels)",
            kind,
            input_size,
            input_size,
            len(specs),
            len(labels) if labels else "no",
        )
        return ModelHandle(
            model=model,
            kind=kind,
            input_size=input_size,
            labels=labels,
            format=topology.format,
            generated_by=topology.generated_by,
            converted_by=topology.converted_by,
        )

    # -- Internal -----------------------------------------------------------

    def _build(self, descriptor: LoadDescriptor) -> tuple[Any, ModelKind, int]:
        layers_error: Exception
        try:
            model = self._runtime.load_layers_model(descriptor)
            shape = self._runtime.input_shape(model)
        except Exception as exc:  # noqa: BLE001 - any failure means "try the graph path"
            logger.warning("Loading as layers model failed (%s); falling back to graph model", exc)
            layers_error = exc
        else:
            logger.debug("Layers model input shape: %s", shape)
            return model, ModelKind.LAYERS, input_size_from_shape(shape, self._default_input_size)

        try:
            model = self._runtime.load_graph_model(descriptor)
        except Exception as graph_error:
            raise LoadError(
                f"Could not load model as layers model ({layers_error}) or graph model ({graph_error})",
                layers_error=layers_error,
            ) from graph_error
        return model, ModelKind.GRAPH, self._default_input_size
