"""Pixel normalization modes.

Each mode maps an HxWx3 float tensor holding RGB values in [0, 255] to the
value range a particular training pipeline expects. The engine never resizes
and keeps channel order, except for the Caffe convention which reorders RGB to
BGR before subtracting its channel means.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from classifyx.ml.errors import UnknownModeWarning

if TYPE_CHECKING:
    from numpy.typing import NDArray


class NormalizationMode(StrEnum):
    RAW_UNIT = "simple"
    IMAGENET_STD = "imagenet"
    SIGNED_UNIT_DIV = "mobilenet_v2"
    SIGNED_UNIT_SUB = "range_neg1_1"
    PASSTHROUGH = "none"
    CHANNEL_SWAP_MEAN = "caffe"


DEFAULT_MODE = NormalizationMode.SIGNED_UNIT_DIV

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)

# BGR order.
CAFFE_MEAN = np.array([103.939, 116.779, 123.68], dtype=np.float32)


@dataclass(frozen=True)
class ModeInfo:
    """Display metadata for a normalization mode."""

    id: str
    display_name: str
    description: str


_MODE_INFO: dict[NormalizationMode, ModeInfo] = {
    NormalizationMode.RAW_UNIT: ModeInfo(
        id="simple",
        display_name="Simple [0, 1]",
        description="x / 255 -> [0, 1]",
    ),
    NormalizationMode.IMAGENET_STD: ModeInfo(
        id="imagenet",
        display_name="ImageNet mean/std",
        description="(x / 255 - mean) / std, mean=[0.485, 0.456, 0.406], std=[0.229, 0.224, 0.225]",
    ),
    NormalizationMode.SIGNED_UNIT_DIV: ModeInfo(
        id="mobilenet_v2",
        display_name="MobileNetV2 [-1, 1] (recommended)",
        description="x / 127.5 - 1 -> [-1, 1]",
    ),
    NormalizationMode.SIGNED_UNIT_SUB: ModeInfo(
        id="range_neg1_1",
        display_name="Centered [-1, 1]",
        description="(x - 127.5) / 127.5 -> [-1, 1]",
    ),
    NormalizationMode.PASSTHROUGH: ModeInfo(
        id="none",
        display_name="No normalization [0, 255]",
        description="x unchanged -> [0, 255]",
    ),
    NormalizationMode.CHANNEL_SWAP_MEAN: ModeInfo(
        id="caffe",
        display_name="Caffe (BGR, mean subtracted)",
        description="RGB -> BGR, then subtract [103.939, 116.779, 123.68]",
    ),
}


def parse_mode(value: str | NormalizationMode) -> NormalizationMode:
    """Return the mode for an identifier.

    Raises:
        ValueError: If ``value`` is not a known mode identifier.
    """
    try:
        return NormalizationMode(value)
    except ValueError:
        valid = ", ".join(m.value for m in NormalizationMode)
        raise ValueError(f"Unknown normalization mode {value!r}; expected one of: {valid}") from None


def describe_mode(mode: NormalizationMode) -> ModeInfo:
    return _MODE_INFO[mode]


def list_modes() -> list[ModeInfo]:
    """Return display metadata for every mode, in declaration order."""
    return [_MODE_INFO[mode] for mode in NormalizationMode]


def normalize(pixels: NDArray[np.floating], mode: str | NormalizationMode) -> NDArray[np.float32]:
    """Apply ``mode`` to an HxWx3 tensor of RGB values in [0, 255].

    An unrecognized mode emits :class:`UnknownModeWarning` and falls back to
    ``x / 255``.

    Raises:
        ValueError: If ``pixels`` is not shaped [H, W, 3].
    """
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"Expected an [H, W, 3] tensor, got shape {pixels.shape}")

    x = pixels.astype(np.float32, copy=False)

    try:
        selected = NormalizationMode(mode)
    except ValueError:
        warnings.warn(
            f"Unknown normalization mode {mode!r}; using x / 255",
            UnknownModeWarning,
            stacklevel=2,
        )
        selected = NormalizationMode.RAW_UNIT

    if selected is NormalizationMode.RAW_UNIT:
        return x / np.float32(255.0)
    if selected is NormalizationMode.IMAGENET_STD:
        return (x / np.float32(255.0) - IMAGENET_MEAN) / IMAGENET_STD
    if selected is NormalizationMode.SIGNED_UNIT_DIV:
        return x / np.float32(127.5) - np.float32(1.0)
    if selected is NormalizationMode.SIGNED_UNIT_SUB:
        return (x - np.float32(127.5)) / np.float32(127.5)
    if selected is NormalizationMode.PASSTHROUGH:
        return x.copy()
    # CHANNEL_SWAP_MEAN
    bgr = x[:, :, ::-1]
    return bgr - CAFFE_MEAN
