"""Topology document parsing and weight manifest decoding.

The weight blob carries no offsets: each manifest entry occupies
``prod(shape) * itemsize`` bytes and entries are packed back to back in
manifest order, little-endian.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from classifyx.ml.errors import FormatError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from numpy.typing import NDArray


_DTYPES: dict[str, np.dtype[Any]] = {
    "float32": np.dtype("<f4"),
    "int32": np.dtype("<i4"),
    "bool": np.dtype("?"),
    "complex64": np.dtype("<c8"),
}

_QUANTIZED_DTYPES: dict[str, np.dtype[Any]] = {
    "uint8": np.dtype("u1"),
    "uint16": np.dtype("<u2"),
    "float16": np.dtype("<f2"),
}


@dataclass(frozen=True)
class Quantization:
    dtype: str
    scale: float | None = None
    min: float | None = None


@dataclass(frozen=True)
class WeightSpec:
    """One entry of the weights manifest."""

    name: str
    shape: tuple[int, ...]
    dtype: str
    quantization: Quantization | None = None

    @property
    def size(self) -> int:
        return math.prod(self.shape)

    @property
    def stored_dtype(self) -> np.dtype[Any]:
        if self.quantization is not None:
            return _QUANTIZED_DTYPES[self.quantization.dtype]
        return _DTYPES[self.dtype]

    @property
    def byte_length(self) -> int:
        return self.size * self.stored_dtype.itemsize


@dataclass(frozen=True)
class TopologyDescriptor:
    """The parsed ``model.json`` document."""

    model_topology: Any
    format: str | None
    generated_by: str | None
    converted_by: str | None
    weights_manifest: list[Any]
    user_defined_metadata: Mapping[str, Any] | None
    raw: Mapping[str, Any] = field(repr=False)


def parse_topology(data: bytes) -> TopologyDescriptor:
    """Parse ``model.json`` bytes.

    Raises:
        FormatError: If the document is not a UTF-8 JSON object or its manifest
            is not a list.
    """
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FormatError(f"model.json is not valid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise FormatError("model.json must contain a JSON object")

    manifest = document.get("weightsManifest")
    if manifest is None:
        manifest = []
    if not isinstance(manifest, list):
        raise FormatError("model.json weightsManifest must be a list")

    metadata = document.get("userDefinedMetadata")
    return TopologyDescriptor(
        model_topology=document.get("modelTopology"),
        format=document.get("format"),
        generated_by=document.get("generatedBy"),
        converted_by=document.get("convertedBy"),
        weights_manifest=manifest,
        user_defined_metadata=metadata if isinstance(metadata, dict) else None,
        raw=document,
    )


def _parse_quantization(name: str, raw: Any) -> Quantization | None:
    if raw is None:
        return None
    if not isinstance(raw, dict) or raw.get("dtype") not in _QUANTIZED_DTYPES:
        raise FormatError(f"Weight {name!r} has unsupported quantization {raw!r}")
    dtype = raw["dtype"]
    if dtype == "float16":
        return Quantization(dtype=dtype)
    try:
        return Quantization(dtype=dtype, scale=float(raw["scale"]), min=float(raw["min"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise FormatError(f"Weight {name!r} quantization needs numeric scale and min") from exc


def _parse_spec(raw: Any) -> WeightSpec:
    if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
        raise FormatError(f"Malformed weight manifest entry: {raw!r}")
    name = raw["name"]

    shape = raw.get("shape")
    if not isinstance(shape, list) or not all(isinstance(d, int) and not isinstance(d, bool) and d >= 0 for d in shape):
        raise FormatError(f"Weight {name!r} has invalid shape {shape!r}")

    dtype = raw.get("dtype", "float32")
    if dtype not in _DTYPES:
        raise FormatError(f"Weight {name!r} has unsupported dtype {dtype!r}")

    return WeightSpec(
        name=name,
        shape=tuple(shape),
        dtype=dtype,
        quantization=_parse_quantization(name, raw.get("quantization")),
    )


def weight_specs(topology: TopologyDescriptor) -> list[WeightSpec]:
    """Return the specs of the first manifest group, in blob order."""
    if not topology.weights_manifest:
        return []
    group = topology.weights_manifest[0]
    if not isinstance(group, dict):
        raise FormatError("weightsManifest groups must be objects")
    entries = group.get("weights") or []
    if not isinstance(entries, list):
        raise FormatError("weightsManifest[0].weights must be a list")
    return [_parse_spec(entry) for entry in entries]


def expected_byte_length(specs: Sequence[WeightSpec]) -> int:
    return sum(spec.byte_length for spec in specs)


def validate_weight_data(specs: Sequence[WeightSpec], data: bytes) -> None:
    """Raise :class:`FormatError` unless ``data`` is exactly as long as the manifest requires."""
    expected = expected_byte_length(specs)
    if len(data) != expected:
        raise FormatError(f"Weight blob is {len(data)} bytes but the manifest describes {expected} bytes")


def decode_weights(specs: Sequence[WeightSpec], data: bytes) -> dict[str, NDArray[Any]]:
    """Slice the weight blob into named arrays, dequantizing where needed.

    The returned dict preserves manifest order.
    """
    validate_weight_data(specs, data)

    arrays: dict[str, NDArray[Any]] = {}
    offset = 0
    for spec in specs:
        if spec.size == 0:
            arrays[spec.name] = np.zeros(spec.shape, dtype=np.float32 if spec.quantization else _DTYPES[spec.dtype])
            continue
        stored = np.frombuffer(data, dtype=spec.stored_dtype, count=spec.size, offset=offset)
        offset += spec.byte_length

        q = spec.quantization
        if q is None:
            values = stored.astype(spec.stored_dtype.newbyteorder("="), copy=True)
        elif q.dtype == "float16":
            values = stored.astype(np.float32)
        else:
            values = stored.astype(np.float32) * np.float32(q.scale) + np.float32(q.min)
            if spec.dtype == "int32":
                values = np.round(values).astype(np.int32)

        arrays[spec.name] = values.reshape(spec.shape)
    return arrays
