"""Tests for the inference driver."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from classifyx.ml.classifier import ImageClassifier, rank
from classifyx.ml.errors import InferenceError, NotLoadedError
from classifyx.ml.model_loader import ModelHandle, ModelKind
from classifyx.ml.normalization import NormalizationMode

if TYPE_CHECKING:
    from collections.abc import Callable

    from conftest import FakeRuntime


def _handle(kind: ModelKind = ModelKind.LAYERS, labels: tuple[str, ...] | None = None, size: int = 16) -> ModelHandle:
    return ModelHandle(model=object(), kind=kind, input_size=size, labels=labels)


class TestImageClassifierPredict:
    def test_layers_dispatches_to_predict(
        self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray
    ) -> None:
        runtime = runtime_factory()
        scores = ImageClassifier(runtime).predict(_handle(), gradient_image, NormalizationMode.RAW_UNIT)

        assert runtime.calls == [("predict", (1, 16, 16, 3))]
        assert scores.shape == (3,)
        assert scores.sum() == pytest.approx(1.0, abs=1e-5)

    def test_graph_dispatches_to_execute(
        self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray
    ) -> None:
        runtime = runtime_factory()
        ImageClassifier(runtime).predict(_handle(ModelKind.GRAPH, size=8), gradient_image, "caffe")
        assert runtime.calls == [("execute", (1, 8, 8, 3))]

    def test_explicit_size_overrides_handle(
        self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray
    ) -> None:
        runtime = runtime_factory()
        ImageClassifier(runtime).predict(_handle(), gradient_image, "simple", size=5)
        assert runtime.calls[0][1] == (1, 5, 5, 3)

    def test_first_of_multiple_outputs(
        self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray
    ) -> None:
        runtime = runtime_factory(multi_output=True)
        scores = ImageClassifier(runtime).predict(_handle(), gradient_image, "simple")
        assert scores.shape == (3,)

    def test_deterministic(self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray) -> None:
        classifier = ImageClassifier(runtime_factory())
        first = classifier.predict(_handle(), gradient_image, NormalizationMode.IMAGENET_STD)
        second = classifier.predict(_handle(), gradient_image, NormalizationMode.IMAGENET_STD)
        np.testing.assert_allclose(first, second)

    def test_mode_changes_output(self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray) -> None:
        classifier = ImageClassifier(runtime_factory())
        raw = classifier.predict(_handle(), gradient_image, NormalizationMode.PASSTHROUGH)
        unit = classifier.predict(_handle(), gradient_image, NormalizationMode.RAW_UNIT)
        assert not np.allclose(raw, unit)

    def test_not_loaded(self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray) -> None:
        with pytest.raises(NotLoadedError):
            ImageClassifier(runtime_factory()).predict(None, gradient_image, "simple")

    def test_runtime_failure_wrapped(
        self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray
    ) -> None:
        cause = RuntimeError("OOM")
        runtime = runtime_factory(run_error=cause)
        with pytest.raises(InferenceError, match="OOM") as exc_info:
            ImageClassifier(runtime).predict(_handle(), gradient_image, "simple")
        assert exc_info.value.__cause__ is cause

    def test_empty_output_list_is_inference_error(self, gradient_image: np.ndarray) -> None:
        class EmptyRuntime:
            def predict(self, model: object, batch: np.ndarray) -> list[np.ndarray]:
                return []

        with pytest.raises(InferenceError, match="no outputs"):
            ImageClassifier(EmptyRuntime()).predict(_handle(), gradient_image, "simple")  # type: ignore[arg-type]


class TestClassify:
    def test_sorted_descending_with_labels(
        self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray
    ) -> None:
        classifier = ImageClassifier(runtime_factory())
        results = classifier.classify(_handle(labels=("red", "green", "blue")), gradient_image, "simple")

        probabilities = [r.probability for r in results]
        assert probabilities == sorted(probabilities, reverse=True)
        # Blue is the brightest channel of the gradient fixture.
        assert results[0].label == "blue"
        assert {r.index for r in results} == {0, 1, 2}

    def test_top_k(self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray) -> None:
        results = ImageClassifier(runtime_factory()).classify(_handle(), gradient_image, "simple", top_k=2)
        assert len(results) == 2

    def test_synthesized_labels(self, runtime_factory: Callable[..., FakeRuntime], gradient_image: np.ndarray) -> None:
        results = ImageClassifier(runtime_factory()).classify(_handle(), gradient_image, "simple")
        assert {r.label for r in results} == {"class #1", "class #2", "class #3"}


class TestRank:
    def test_ties_keep_index_order(self) -> None:
        results = rank(np.array([0.25, 0.5, 0.25], dtype=np.float32), None)
        assert [r.index for r in results] == [1, 0, 2]

    def test_more_scores_than_labels(self) -> None:
        results = rank(np.array([0.1, 0.9], dtype=np.float32), ("only",))
        assert results[0].label == "class #2"
        assert results[1].label == "only"
