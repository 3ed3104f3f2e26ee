"""Class label resolution.

Labels come from the topology document's metadata when present, otherwise
from a standalone ``labels.json`` archive entry. Missing labels are a normal
outcome; callers synthesize placeholder names via :func:`label_name`.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from classifyx.ml.archive import ArchiveBundle, ArchiveEntry
    from classifyx.ml.weights import TopologyDescriptor

logger = logging.getLogger(__name__)

LabelTable = tuple[str, ...]


def _path(*keys: str) -> Callable[[Mapping[str, Any]], Any]:
    """Build an accessor returning ``document[k0][k1]...`` or None."""

    def accessor(document: Mapping[str, Any]) -> Any:
        node: Any = document
        for key in keys:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        return node

    accessor.__name__ = ".".join(keys)
    return accessor


METADATA_ACCESSORS: tuple[Callable[[Mapping[str, Any]], Any], ...] = (
    _path("userDefinedMetadata", "outputLabels"),
    _path("userDefinedMetadata", "labels"),
    _path("userDefinedMetadata", "classes"),
    _path("metadata", "labels"),
    _path("class_names"),
    _path("modelTopology", "training_config", "class_names"),
    _path("signature", "labels"),
)


def _label_table(items: list[Any]) -> LabelTable:
    # Non-string items become "" so label_name falls back to a placeholder.
    return tuple(item if isinstance(item, str) else "" for item in items)


def _as_labels(value: Any) -> LabelTable | None:
    if isinstance(value, list) and value and isinstance(value[0], str):
        return _label_table(value)
    return None


def labels_from_metadata(document: Mapping[str, Any]) -> LabelTable | None:
    """Probe the known metadata paths, then any other user-defined metadata list."""
    for accessor in METADATA_ACCESSORS:
        labels = _as_labels(accessor(document))
        if labels is not None:
            logger.debug("Labels found at %s", accessor.__name__)
            return labels

    metadata = document.get("userDefinedMetadata")
    if isinstance(metadata, dict):
        for key, value in metadata.items():
            labels = _as_labels(value)
            if labels is not None:
                logger.debug("Labels found at userDefinedMetadata.%s", key)
                return labels
    return None


def labels_from_entry(entry: ArchiveEntry | None) -> LabelTable | None:
    """Parse a standalone labels file as a JSON array; None if absent or unusable."""
    if entry is None:
        return None
    try:
        value = json.loads(entry.data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.debug("Ignoring unreadable %s: %s", entry.name, exc)
        return None
    if not isinstance(value, list) or not value:
        logger.debug("Ignoring %s: expected a non-empty JSON array", entry.name)
        return None
    return _label_table(value)


def resolve_labels(topology: TopologyDescriptor, bundle: ArchiveBundle) -> LabelTable | None:
    """Return the class labels for a model, or None when none are available."""
    return labels_from_metadata(topology.raw) or labels_from_entry(bundle.labels)


def label_name(labels: Sequence[str] | None, index: int) -> str:
    """Return the label for ``index``, or a ``class #N`` placeholder (N is 1-based)."""
    if labels is not None and 0 <= index < len(labels) and labels[index]:
        return labels[index]
    return f"class #{index + 1}"
