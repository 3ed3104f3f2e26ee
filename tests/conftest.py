"""Shared fixtures: in-memory archives, images and a numpy-backed fake runtime."""

from __future__ import annotations

import io
import json
import zipfile
from typing import TYPE_CHECKING, Any

import numpy as np
import pytest
from PIL import Image

from classifyx.config import Settings

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from numpy.typing import NDArray

    from classifyx.ml.runtime import LoadDescriptor


# ---------------------------------------------------------------------------
# Model documents
# ---------------------------------------------------------------------------

KERNEL = np.array([[1.0, 0.0, 0.5], [0.0, 1.0, 0.5]], dtype="<f4")
BIAS = np.array([0.1, 0.2, 0.3], dtype="<f4")
WEIGHT_BYTES = KERNEL.tobytes() + BIAS.tobytes()


def layers_document(**extra: Any) -> dict[str, Any]:
    """A minimal TF.js layers-model ``model.json``."""
    document: dict[str, Any] = {
        "format": "layers-model",
        "generatedBy": "keras v2.15.0",
        "convertedBy": "TensorFlow.js Converter v4.17.0",
        "modelTopology": {
            "class_name": "Sequential",
            "config": {"name": "sequential", "layers": []},
        },
        "weightsManifest": [
            {
                "paths": ["group1-shard1of1.bin"],
                "weights": [
                    {"name": "dense/kernel", "shape": [2, 3], "dtype": "float32"},
                    {"name": "dense/bias", "shape": [3], "dtype": "float32"},
                ],
            }
        ],
    }
    document.update(extra)
    return document


def build_zip(entries: dict[str, Any]) -> bytes:
    """Zip ``entries``; dict/list values are JSON-encoded, str values UTF-8 encoded."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, value in entries.items():
            if name.endswith("/"):
                archive.writestr(zipfile.ZipInfo(name), b"")
                continue
            if isinstance(value, (dict, list)):
                value = json.dumps(value)
            if isinstance(value, str):
                value = value.encode("utf-8")
            archive.writestr(name, value)
    return buffer.getvalue()


def model_archive(document: dict[str, Any] | None = None, labels: Any = None, weights: bytes = WEIGHT_BYTES) -> bytes:
    entries: dict[str, Any] = {
        "model.json": document if document is not None else layers_document(),
        "model.weights.bin": weights,
    }
    if labels is not None:
        entries["labels.json"] = labels
    return build_zip(entries)


def png_bytes(pixels: NDArray[np.uint8]) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Fake runtime
# ---------------------------------------------------------------------------


class FakeRuntime:
    """Deterministic stand-in for the tensor-execution engine.

    The "model" computes a softmax over the first ``num_classes`` input-channel
    means, so outputs depend on both the image and the normalization mode.
    """

    def __init__(
        self,
        *,
        layers_error: Exception | None = None,
        graph_error: Exception | None = None,
        input_shape: Sequence[int | None] | None = (None, 32, 48, 3),
        num_classes: int = 3,
        multi_output: bool = False,
        run_error: Exception | None = None,
    ) -> None:
        self.layers_error = layers_error
        self.graph_error = graph_error
        self._input_shape = input_shape
        self.num_classes = num_classes
        self.multi_output = multi_output
        self.run_error = run_error
        self.descriptors: list[LoadDescriptor] = []
        self.calls: list[tuple[str, tuple[int, ...]]] = []

    def load_layers_model(self, descriptor: LoadDescriptor) -> dict[str, str]:
        self.descriptors.append(descriptor)
        if self.layers_error is not None:
            raise self.layers_error
        return {"kind": "layers"}

    def load_graph_model(self, descriptor: LoadDescriptor) -> dict[str, str]:
        self.descriptors.append(descriptor)
        if self.graph_error is not None:
            raise self.graph_error
        return {"kind": "graph"}

    def input_shape(self, model: Any) -> Sequence[int | None] | None:
        return self._input_shape

    def predict(self, model: Any, batch: NDArray[np.float32]) -> Any:
        self.calls.append(("predict", batch.shape))
        return self._run(batch)

    def execute(self, model: Any, batch: NDArray[np.float32]) -> Any:
        self.calls.append(("execute", batch.shape))
        return self._run(batch)

    def _run(self, batch: NDArray[np.float32]) -> Any:
        if self.run_error is not None:
            raise self.run_error
        means = batch.mean(axis=(1, 2))[:, : self.num_classes]
        logits = np.resize(means, (batch.shape[0], self.num_classes))
        exp = np.exp(logits - logits.max(axis=1, keepdims=True))
        probs = exp / exp.sum(axis=1, keepdims=True)
        if self.multi_output:
            return [probs, np.zeros((batch.shape[0], 1), dtype=np.float32)]
        return probs


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "default_mode": "mobilenet_v2",
        "default_input_size": 224,
        "debug": False,
        "max_concurrent": 1,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def runtime_factory() -> Callable[..., FakeRuntime]:
    return FakeRuntime


@pytest.fixture()
def gradient_image() -> NDArray[np.uint8]:
    """A 20x30 RGB image with distinct per-channel content."""
    height, width = 20, 30
    ys, xs = np.mgrid[0:height, 0:width]
    image = np.stack(
        [
            (xs * 255 // (width - 1)),
            (ys * 255 // (height - 1)),
            np.full_like(xs, 200),
        ],
        axis=-1,
    )
    return image.astype(np.uint8)
