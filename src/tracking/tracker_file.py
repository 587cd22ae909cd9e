"""Tracker file persistence.

A tracker file is a small YAML document, ``<name>.qv``, holding the
checksum and location of one tracked artifact. Workspace paths are stored
relative to the tracker file; external artifacts store their full URL.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator, Mapping

from core.constants import STATE_DIR_NAME, TRACKER_FILE_SUFFIX
from core.errors import QuiverTrackingError
from core.types import TrackedArtifact
from core.yaml_io import dump_yaml_file, load_yaml_file


def tracker_path_for(artifact_path: Path) -> Path:
    """Return the tracker file path for a workspace artifact."""
    return artifact_path.parent / f"{artifact_path.name}{TRACKER_FILE_SUFFIX}"


def iter_tracker_files(workspace_root: Path) -> Iterator[Path]:
    """Yield tracker files below the workspace, skipping the state dir."""
    for tracker_path in sorted(workspace_root.rglob(f"*{TRACKER_FILE_SUFFIX}")):
        relative_path = tracker_path.relative_to(workspace_root)
        if STATE_DIR_NAME in relative_path.parts or not tracker_path.is_file():
            continue
        yield tracker_path


def read_tracker_file(tracker_path: Path) -> TrackedArtifact:
    """Read the artifact recorded by a tracker file.

    Args:
        tracker_path: ``.qv`` file path.

    Returns:
        Tracked artifact with the path exactly as stored.

    Raises:
        QuiverTrackingError: If the file is missing or malformed.
    """
    payload = load_yaml_file(tracker_path, error_type=QuiverTrackingError)
    if not isinstance(payload, Mapping) or not isinstance(payload.get("outs"), list):
        raise QuiverTrackingError(
            f"Invalid tracker file at {tracker_path}: expected an 'outs' list. "
            "Re-add the artifact to regenerate it."
        )
    outs = payload["outs"]
    if len(outs) != 1 or not isinstance(outs[0], Mapping):
        raise QuiverTrackingError(
            f"Invalid tracker file at {tracker_path}: expected exactly one output entry."
        )
    return _artifact_from_payload(outs[0], tracker_path)


def write_tracker_file(tracker_path: Path, artifact: TrackedArtifact) -> None:
    """Write one artifact entry to a tracker file."""
    entry: dict[str, Any] = {
        "path": artifact.path,
        "checksum": artifact.checksum,
        "checksum_type": artifact.checksum_type,
    }
    if artifact.size is not None:
        entry["size"] = artifact.size
    if artifact.file_count is not None:
        entry["nfiles"] = artifact.file_count
    if artifact.external:
        entry["external"] = True
    dump_yaml_file(tracker_path, {"outs": [entry]}, error_type=QuiverTrackingError)


def _artifact_from_payload(entry: Mapping[str, Any], tracker_path: Path) -> TrackedArtifact:
    try:
        return TrackedArtifact(
            path=str(entry["path"]),
            checksum=str(entry["checksum"]),
            checksum_type=str(entry.get("checksum_type", "sha256")),
            size=int(entry["size"]) if entry.get("size") is not None else None,
            file_count=int(entry["nfiles"]) if entry.get("nfiles") is not None else None,
            external=bool(entry.get("external", False)),
        )
    except KeyError as error:
        raise QuiverTrackingError(
            f"Invalid tracker file at {tracker_path}: missing field {error.args[0]!r}."
        ) from error
