"""Image classification driver.

Preprocesses an image for a loaded model, dispatches on the model kind, and
turns the raw output into ranked classification results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from classifyx.ml.errors import InferenceError, NotLoadedError
from classifyx.ml.labels import label_name
from classifyx.ml.model_loader import ModelKind
from classifyx.ml.preprocessing import preprocess

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.ml.model_loader import ModelHandle
    from classifyx.ml.normalization import NormalizationMode
    from classifyx.ml.runtime import ModelRuntime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    index: int
    label: str
    probability: float


def _first_output(output: Any) -> Any:
    if isinstance(output, (list, tuple)):
        if not output:
            raise ValueError("Model returned no outputs")
        return output[0]
    if isinstance(output, dict):
        if not output:
            raise ValueError("Model returned no outputs")
        return next(iter(output.values()))
    return output


class ImageClassifier:
    """Runs loaded models on images."""

    def __init__(self, runtime: ModelRuntime) -> None:
        self._runtime = runtime

    def predict(
        self,
        handle: ModelHandle | None,
        image: NDArray[np.uint8],
        mode: NormalizationMode | str,
        size: int | None = None,
        debug: bool = False,
    ) -> NDArray[np.float32]:
        """Return the raw score vector for a single image.

        Args:
            handle: The loaded model.
            image: HxWx3 RGB uint8 array.
            mode: Normalization mode to apply after resizing.
            size: Square input size; defaults to ``handle.input_size``.
            debug: Log tensor statistics.

        Raises:
            NotLoadedError: If ``handle`` is None.
            InferenceError: If the runtime fails.
        """
        if handle is None:
            raise NotLoadedError("No model loaded; upload a model archive first")

        batch = preprocess(image, size or handle.input_size, mode, debug=debug)
        output: Any = None
        try:
            if handle.kind is ModelKind.LAYERS:
                output = self._runtime.predict(handle.model, batch)
            elif handle.kind is ModelKind.GRAPH:
                output = self._runtime.execute(handle.model, batch)
            else:
                raise ValueError(f"Unknown model kind {handle.kind!r}")

            first = np.asarray(_first_output(output), dtype=np.float32)
            scores = first[0].reshape(-1) if first.ndim > 1 else first.reshape(-1)
            scores = scores.copy()
        except Exception as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc
        finally:
            del batch, output

        if debug:
            logger.info(
                "Output: %d classes, min=%.4f, max=%.4f, sum=%.4f",
                scores.size,
                float(scores.min()) if scores.size else 0.0,
                float(scores.max()) if scores.size else 0.0,
                float(scores.sum()),
            )
        return scores

    def classify(
        self,
        handle: ModelHandle | None,
        image: NDArray[np.uint8],
        mode: NormalizationMode | str,
        top_k: int | None = None,
        debug: bool = False,
    ) -> list[ClassificationResult]:
        """Classify an image and return results sorted by probability (descending)."""
        scores = self.predict(handle, image, mode, debug=debug)
        labels = handle.labels if handle is not None else None
        results = rank(scores, labels, top_k)

        if debug:
            for result in results:
                logger.info("  %s: %.2f%%", result.label, result.probability * 100)
        return results


def rank(
    scores: NDArray[np.floating],
    labels: tuple[str, ...] | None,
    top_k: int | None = None,
) -> list[ClassificationResult]:
    """Pair scores with label names and sort them, highest first. Ties keep index order."""
    order = np.argsort(-scores, kind="stable")
    if top_k is not None:
        order = order[:top_k]
    return [
        ClassificationResult(index=int(i), label=label_name(labels, int(i)), probability=float(scores[i]))
        for i in order
    ]
