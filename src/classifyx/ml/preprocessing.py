"""Image preprocessing pipeline.

Handles decoding, EXIF orientation, RGB conversion, size validation,
aligned-corner bilinear resizing and batching of images for model input.
"""

from __future__ import annotations

import io
import logging
import warnings
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from classifyx.ml.errors import ImageError
from classifyx.ml.normalization import normalize

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.ml.normalization import NormalizationMode

logger = logging.getLogger(__name__)


def decode_image(
    image_bytes: bytes,
    max_file_size: int | None = None,
    max_pixels: int | None = None,
) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_file_size: Optional limit on ``len(image_bytes)``.
        max_pixels: Optional limit on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        ImageError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ImageError("Image upload is empty")
    if max_file_size is not None and len(image_bytes) > max_file_size:
        raise ImageError(f"Image is {len(image_bytes)} bytes, limit is {max_file_size}")

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            with Image.open(io.BytesIO(image_bytes)) as img:
                if max_pixels is not None and img.width * img.height > max_pixels:
                    raise ImageError(f"Image is {img.width}x{img.height}, limit is {max_pixels} pixels")
                img.load()
                oriented = ImageOps.exif_transpose(img)
                rgb = oriented.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError, Image.DecompressionBombWarning) as exc:
        raise ImageError(f"Could not decode image: {exc}") from exc

    return np.asarray(rgb, dtype=np.uint8)


def _axis_weights(in_size: int, out_size: int) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float32]]:
    if out_size == 1 or in_size == 1:
        coords = np.zeros(out_size, dtype=np.float64)
    else:
        coords = np.arange(out_size, dtype=np.float64) * ((in_size - 1) / (out_size - 1))
    lo = np.floor(coords).astype(np.intp)
    hi = np.minimum(lo + 1, in_size - 1)
    frac = (coords - lo).astype(np.float32)
    return lo, hi, frac


def resize_bilinear(image: NDArray[np.generic], size: int) -> NDArray[np.float32]:
    """Resize an HxWxC image to size x size with aligned-corner bilinear sampling.

    Corner pixels of the output coincide with corner pixels of the input.
    """
    if size < 1:
        raise ValueError(f"Target size must be positive, got {size}")
    src = image.astype(np.float32, copy=False)
    height, width = src.shape[:2]

    y0, y1, wy = _axis_weights(height, size)
    x0, x1, wx = _axis_weights(width, size)

    wy = wy[:, None, None]
    wx = wx[None, :, None]

    top = src[y0][:, x0] * (1 - wx) + src[y0][:, x1] * wx
    bottom = src[y1][:, x0] * (1 - wx) + src[y1][:, x1] * wx
    return (top * (1 - wy) + bottom * wy).astype(np.float32, copy=False)


def _stats(tensor: NDArray[np.floating]) -> str:
    return f"min={float(tensor.min()):.4f}, max={float(tensor.max()):.4f}, mean={float(tensor.mean()):.4f}"


def preprocess(
    image: NDArray[np.uint8],
    size: int,
    mode: NormalizationMode | str,
    debug: bool = False,
) -> NDArray[np.float32]:
    """Resize, normalize and batch an RGB image.

    Returns:
        A [1, size, size, 3] float32 tensor.
    """
    if image.ndim != 3 or image.shape[2] != 3:
        raise ImageError(f"Expected an HxWx3 RGB image, got shape {image.shape}")

    if debug:
        logger.info("Source image %s, %s", image.shape, _stats(image))

    resized = resize_bilinear(image, size)
    normalized = normalize(resized, mode)

    if debug:
        logger.info("Normalized (%s) %s, %s", mode, normalized.shape, _stats(normalized))

    return normalized[np.newaxis, ...]
