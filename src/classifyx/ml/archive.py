"""Archive inspection: locate the model entries inside an uploaded zip."""

from __future__ import annotations

import io
import logging
import zipfile
import zlib
from dataclasses import dataclass

from classifyx.ml.errors import FormatError, MissingArtifactError

logger = logging.getLogger(__name__)

TOPOLOGY_FILENAME = "model.json"
WEIGHTS_FILENAME = "model.weights.bin"
WEIGHTS_SUFFIX = ".weights.bin"
LABELS_FILENAME = "labels.json"


@dataclass(frozen=True)
class ArchiveEntry:
    """A single extracted archive member."""

    name: str
    data: bytes


@dataclass(frozen=True)
class ArchiveBundle:
    """The classified entries of a model archive."""

    topology: ArchiveEntry
    weights: ArchiveEntry
    labels: ArchiveEntry | None = None


def _basename(name: str) -> str:
    return name.rsplit("/", 1)[-1]


def _is_topology(basename: str) -> bool:
    return basename == TOPOLOGY_FILENAME


def _is_weights(basename: str) -> bool:
    return basename == WEIGHTS_FILENAME or basename.endswith(WEIGHTS_SUFFIX)


def _is_labels(basename: str) -> bool:
    return basename == LABELS_FILENAME


def _pick(kind: str, candidates: list[str]) -> str | None:
    if not candidates:
        return None
    ordered = sorted(candidates)
    if len(ordered) > 1:
        logger.warning("Archive has %d %s candidates; using %s, ignoring %s", len(ordered), kind, ordered[0], ordered[1:])
    return ordered[0]


def inspect_archive(data: bytes, max_size: int | None = None) -> ArchiveBundle:
    """Extract the topology, weights and optional labels entries from a zip archive.

    Entries are matched on their final path segment, so archives that wrap the
    files in a folder are accepted. When several entries match the same role,
    the lexicographically first entry name wins.

    Args:
        data: Raw archive bytes.
        max_size: Optional upper bound on ``len(data)`` and on the inflated size
            of the selected entries.

    Returns:
        The classified bundle.

    Raises:
        FormatError: If the data is not a readable zip archive or is too large.
        MissingArtifactError: If the topology or weights entry is absent.
    """
    if max_size is not None and len(data) > max_size:
        raise FormatError(f"Model archive is {len(data)} bytes, limit is {max_size}")

    buffer = io.BytesIO(data)
    if not zipfile.is_zipfile(buffer):
        raise FormatError("Model upload is not a zip archive")

    try:
        with zipfile.ZipFile(buffer) as archive:
            topology: list[str] = []
            weights: list[str] = []
            labels: list[str] = []

            for info in archive.infolist():
                if info.is_dir():
                    continue
                base = _basename(info.filename)
                if _is_topology(base):
                    topology.append(info.filename)
                elif _is_weights(base):
                    weights.append(info.filename)
                elif _is_labels(base):
                    labels.append(info.filename)

            topology_name = _pick("topology", topology)
            weights_name = _pick("weights", weights)
            labels_name = _pick("labels", labels)

            missing = []
            if topology_name is None:
                missing.append("topology")
            if weights_name is None:
                missing.append("weights")
            if missing:
                raise MissingArtifactError(missing)

            if max_size is not None:
                selected = [name for name in (topology_name, weights_name, labels_name) if name]
                inflated = sum(archive.getinfo(name).file_size for name in selected)
                if inflated > max_size:
                    raise FormatError(f"Model archive expands to {inflated} bytes, limit is {max_size}")

            bundle = ArchiveBundle(
                topology=ArchiveEntry(topology_name, archive.read(topology_name)),
                weights=ArchiveEntry(weights_name, archive.read(weights_name)),
                labels=ArchiveEntry(labels_name, archive.read(labels_name)) if labels_name else None,
            )
    except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError) as exc:
        raise FormatError(f"Model archive is corrupted: {exc}") from exc

    logger.info(
        "Archive entries: topology=%s weights=%s (%d bytes) labels=%s",
        bundle.topology.name,
        bundle.weights.name,
        len(bundle.weights.data),
        bundle.labels.name if bundle.labels else None,
    )
    return bundle
