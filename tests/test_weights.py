"""Tests for topology parsing and weight manifest decoding."""

from __future__ import annotations

import json
from typing import Any

import numpy as np
import pytest
from conftest import BIAS, KERNEL, WEIGHT_BYTES, layers_document

from classifyx.ml.errors import FormatError
from classifyx.ml.weights import (
    decode_weights,
    expected_byte_length,
    parse_topology,
    validate_weight_data,
    weight_specs,
)


def _specs(*entries: dict[str, Any]) -> list[Any]:
    document = {"weightsManifest": [{"paths": ["x"], "weights": list(entries)}]}
    return weight_specs(parse_topology(json.dumps(document).encode()))


class TestParseTopology:
    def test_fields(self) -> None:
        topology = parse_topology(json.dumps(layers_document(userDefinedMetadata={"k": 1})).encode())
        assert topology.format == "layers-model"
        assert topology.generated_by == "keras v2.15.0"
        assert topology.converted_by.startswith("TensorFlow.js")
        assert topology.model_topology["class_name"] == "Sequential"
        assert topology.user_defined_metadata == {"k": 1}

    def test_invalid_json(self) -> None:
        with pytest.raises(FormatError, match="not valid JSON"):
            parse_topology(b"{")

    def test_not_an_object(self) -> None:
        with pytest.raises(FormatError, match="JSON object"):
            parse_topology(b"[1, 2]")

    def test_manifest_must_be_list(self) -> None:
        with pytest.raises(FormatError, match="weightsManifest"):
            parse_topology(b'{"weightsManifest": {}}')


class TestWeightSpecs:
    def test_first_group_only(self) -> None:
        document = {
            "weightsManifest": [
                {"weights": [{"name": "a", "shape": [2], "dtype": "float32"}]},
                {"weights": [{"name": "b", "shape": [2], "dtype": "float32"}]},
            ]
        }
        specs = weight_specs(parse_topology(json.dumps(document).encode()))
        assert [s.name for s in specs] == ["a"]

    def test_no_manifest(self) -> None:
        assert weight_specs(parse_topology(b"{}")) == []

    def test_byte_lengths(self) -> None:
        specs = _specs(
            {"name": "f", "shape": [2, 3], "dtype": "float32"},
            {"name": "i", "shape": [4], "dtype": "int32"},
            {"name": "b", "shape": [5], "dtype": "bool"},
            {"name": "q", "shape": [3], "dtype": "float32", "quantization": {"dtype": "uint8", "scale": 0.5, "min": -1}},
        )
        assert [s.byte_length for s in specs] == [24, 16, 5, 3]
        assert expected_byte_length(specs) == 48

    @pytest.mark.parametrize(
        "entry",
        [
            {"shape": [1], "dtype": "float32"},
            {"name": "w", "shape": "3", "dtype": "float32"},
            {"name": "w", "shape": [-1], "dtype": "float32"},
            {"name": "w", "shape": [1], "dtype": "string"},
            {"name": "w", "shape": [1], "dtype": "float32", "quantization": {"dtype": "int4"}},
            {"name": "w", "shape": [1], "dtype": "float32", "quantization": {"dtype": "uint8"}},
        ],
    )
    def test_malformed_entries(self, entry: dict[str, Any]) -> None:
        with pytest.raises(FormatError):
            _specs(entry)


class TestDecodeWeights:
    def test_slices_in_manifest_order(self) -> None:
        specs = weight_specs(parse_topology(json.dumps(layers_document()).encode()))
        arrays = decode_weights(specs, WEIGHT_BYTES)
        assert list(arrays) == ["dense/kernel", "dense/bias"]
        np.testing.assert_array_equal(arrays["dense/kernel"], KERNEL)
        np.testing.assert_array_equal(arrays["dense/bias"], BIAS)

    def test_length_mismatch(self) -> None:
        specs = weight_specs(parse_topology(json.dumps(layers_document()).encode()))
        with pytest.raises(FormatError, match="describes 36 bytes"):
            validate_weight_data(specs, WEIGHT_BYTES + b"\x00")
        with pytest.raises(FormatError):
            decode_weights(specs, WEIGHT_BYTES[:-4])

    def test_uint8_dequantization(self) -> None:
        specs = _specs(
            {"name": "q", "shape": [3], "dtype": "float32", "quantization": {"dtype": "uint8", "scale": 0.5, "min": -1.0}}
        )
        arrays = decode_weights(specs, bytes([0, 2, 4]))
        np.testing.assert_allclose(arrays["q"], [-1.0, 0.0, 1.0])
        assert arrays["q"].dtype == np.float32

    def test_float16_dequantization(self) -> None:
        specs = _specs({"name": "h", "shape": [2], "dtype": "float32", "quantization": {"dtype": "float16"}})
        data = np.array([1.5, -2.0], dtype="<f2").tobytes()
        np.testing.assert_array_equal(decode_weights(specs, data)["h"], np.array([1.5, -2.0], dtype=np.float32))

    def test_int32_and_bool(self) -> None:
        specs = _specs(
            {"name": "i", "shape": [2], "dtype": "int32"},
            {"name": "b", "shape": [2], "dtype": "bool"},
        )
        data = np.array([7, -3], dtype="<i4").tobytes() + bytes([1, 0])
        arrays = decode_weights(specs, data)
        np.testing.assert_array_equal(arrays["i"], [7, -3])
        np.testing.assert_array_equal(arrays["b"], [True, False])

    def test_zero_sized_entry(self) -> None:
        specs = _specs(
            {"name": "empty", "shape": [0, 3], "dtype": "float32"},
            {"name": "x", "shape": [1], "dtype": "float32"},
        )
        arrays = decode_weights(specs, np.array([2.0], dtype="<f4").tobytes())
        assert arrays["empty"].shape == (0, 3)
        np.testing.assert_array_equal(arrays["x"], [2.0])
