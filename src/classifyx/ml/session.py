"""Classifier session: the single active model, image, and preprocessing mode.

Every piece of state is replaced wholesale. A failed model upload leaves the
previously loaded model in place; a failed prediction leaves everything as it
was. Mode and debug switches do not wait for the session lock, so they take
effect immediately and never block behind a running upload or prediction.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from classifyx.ml.archive import inspect_archive
from classifyx.ml.classifier import ImageClassifier, rank
from classifyx.ml.errors import ClassifyXError, ImageError, NotLoadedError
from classifyx.ml.labels import label_name
from classifyx.ml.model_loader import ModelLoader
from classifyx.ml.normalization import (
    NormalizationMode,
    describe_mode,
    list_modes,
    parse_mode,
)
from classifyx.ml.preprocessing import decode_image

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from classifyx.config import Settings
    from classifyx.ml.classifier import ClassificationResult
    from classifyx.ml.model_loader import ModelHandle, ModelKind
    from classifyx.ml.normalization import ModeInfo
    from classifyx.ml.runtime import ModelRuntime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    """Summary of the active model."""

    is_loaded: bool
    runtime: ModelKind | None
    input_size: int
    label_count: int
    labels: tuple[str, ...] | None = None


@dataclass(frozen=True)
class ImageHandle:
    """Opaque reference to the uploaded image."""

    id: str
    width: int
    height: int


@dataclass(frozen=True)
class _StoredImage:
    handle: ImageHandle
    pixels: NDArray[np.uint8]


@dataclass(frozen=True)
class ModeComparison:
    """Top prediction of one normalization mode, or the error it raised."""

    mode: NormalizationMode
    display_name: str
    top: ClassificationResult | None
    scores: tuple[float, ...] = ()
    error: str | None = None


class ClassifierSession:
    """Owns the active model handle, uploaded image, mode and debug flag."""

    def __init__(self, settings: Settings, runtime: ModelRuntime) -> None:
        self._settings = settings
        self._loader = ModelLoader(runtime, default_input_size=settings.default_input_size)
        self._classifier = ImageClassifier(runtime)

        self._lock = threading.RLock()
        self._handle: ModelHandle | None = None
        self._image: _StoredImage | None = None
        self._mode: NormalizationMode = parse_mode(settings.default_mode)
        self._debug: bool = settings.debug

    # -- Model --------------------------------------------------------------

    def upload_model(self, archive_bytes: bytes) -> ModelInfo:
        """Load a model archive, replacing the active model on success.

        Raises:
            MissingArtifactError: If model.json or the weights file is absent.
            FormatError: If the archive or manifest is malformed.
            LoadError: If the runtime cannot build the model either way.
        """
        with self._lock:
            bundle = inspect_archive(archive_bytes, max_size=self._settings.max_archive_size)
            handle = self._loader.load(bundle)
            self._handle = handle
            if self._debug:
                logger.info(
                    "Model provenance: format=%s generatedBy=%s convertedBy=%s",
                    handle.format,
                    handle.generated_by,
                    handle.converted_by,
                )
                logger.info("Labels: %s", handle.labels)
            return self.model_info()

    def model_info(self) -> ModelInfo:
        handle = self._handle
        if handle is None:
            return ModelInfo(is_loaded=False, runtime=None, input_size=self._settings.default_input_size, label_count=0)
        return ModelInfo(
            is_loaded=True,
            runtime=handle.kind,
            input_size=handle.input_size,
            label_count=handle.label_count,
            labels=handle.labels,
        )

    def label_name(self, index: int) -> str:
        handle = self._handle
        return label_name(handle.labels if handle else None, index)

    # -- Image --------------------------------------------------------------

    def upload_image(self, image_bytes: bytes) -> ImageHandle:
        """Decode and store an image for subsequent predictions.

        Raises:
            ImageError: If the bytes are not a decodable image within limits.
        """
        pixels = decode_image(
            image_bytes,
            max_file_size=self._settings.max_image_file_size,
            max_pixels=self._settings.max_image_pixels,
        )
        handle = ImageHandle(id=uuid.uuid4().hex, width=int(pixels.shape[1]), height=int(pixels.shape[0]))
        with self._lock:
            self._image = _StoredImage(handle=handle, pixels=pixels)
        logger.info("Image %s uploaded (%dx%d)", handle.id, handle.width, handle.height)
        return handle

    @property
    def image(self) -> ImageHandle | None:
        stored = self._image
        return stored.handle if stored else None

    # -- Prediction ---------------------------------------------------------

    def predict(self, top_k: int | None = None) -> list[ClassificationResult]:
        """Classify the uploaded image with the active model and mode.

        Raises:
            NotLoadedError: If no model is loaded.
            ImageError: If no image has been uploaded.
            InferenceError: If the runtime fails.
        """
        with self._lock:
            handle, pixels = self._require_inputs()
            if self._debug:
                logger.info("Predicting with %s model, mode=%s", handle.kind, self._mode)
            return self._classifier.classify(handle, pixels, self._mode, top_k=top_k, debug=self._debug)

    def compare_modes(self) -> list[ModeComparison]:
        """Run the uploaded image through every mode, without changing the selected mode.

        A failure in one mode is recorded on its entry and does not stop the sweep.
        """
        with self._lock:
            handle, pixels = self._require_inputs()
            comparisons: list[ModeComparison] = []
            for mode in NormalizationMode:
                info = describe_mode(mode)
                try:
                    scores = self._classifier.predict(handle, pixels, mode, debug=self._debug)
                except ClassifyXError as exc:
                    logger.warning("Mode %s failed: %s", mode, exc)
                    comparisons.append(ModeComparison(mode=mode, display_name=info.display_name, top=None, error=str(exc)))
                    continue
                ranked = rank(scores, handle.labels, top_k=1)
                comparisons.append(
                    ModeComparison(
                        mode=mode,
                        display_name=info.display_name,
                        top=ranked[0] if ranked else None,
                        scores=tuple(float(s) for s in scores),
                    )
                )
                logger.info("Mode %s: %s", mode, ranked[0] if ranked else "no output")
            return comparisons

    # -- Mode / debug -------------------------------------------------------

    @property
    def mode(self) -> NormalizationMode:
        return self._mode

    def set_mode(self, mode_id: str) -> NormalizationMode:
        """Select a normalization mode.

        Raises:
            ValueError: If ``mode_id`` is unknown; the current mode is kept.
        """
        mode = parse_mode(mode_id)
        self._mode = mode
        logger.info("Normalization mode set to %s (%s)", mode, describe_mode(mode).description)
        return mode

    def list_modes(self) -> list[ModeInfo]:
        return list_modes()

    @property
    def debug(self) -> bool:
        return self._debug

    def set_debug_mode(self, enabled: bool) -> None:
        self._debug = bool(enabled)
        logger.info("Debug mode %s", "enabled" if enabled else "disabled")

    # -- Internal -----------------------------------------------------------

    def _require_inputs(self) -> tuple[ModelHandle, NDArray[np.uint8]]:
        if self._handle is None:
            raise NotLoadedError("No model loaded; upload a model archive first")
        if self._image is None:
            raise ImageError("No image uploaded; upload an image first")
        return self._handle, self._image.pixels
