"""Stage lock file persistence.

The lock file, ``quiver.lock``, records the command, dependency checksums,
parameter values, and output checksums of the last successful run of
every stage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from core.constants import HASH_ALGORITHM, LOCK_FILE_NAME
from core.errors import QuiverPipelineError
from core.yaml_io import dump_yaml_file, load_yaml_file


@dataclass(frozen=True)
class LockEntry:
    """Recorded state of one stage run."""

    cmd: str
    deps: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Mapping[str, object]] = field(default_factory=dict)
    outs: Mapping[str, str] = field(default_factory=dict)


def lock_file_path(workspace_root: Path) -> Path:
    """Return the lock file location of a workspace."""
    return workspace_root / LOCK_FILE_NAME


def read_lock_file(workspace_root: Path) -> dict[str, LockEntry]:
    """Read every stage entry from the lock file.

    Returns:
        Entries keyed by stage name; empty when the file is absent.

    Raises:
        QuiverPipelineError: If the lock file is malformed.
    """
    lock_path = lock_file_path(workspace_root)
    payload = load_yaml_file(lock_path, error_type=QuiverPipelineError, default_value={})
    if not isinstance(payload, Mapping):
        raise QuiverPipelineError(f"Invalid lock file at {lock_path}: expected a mapping.")
    stages = payload.get("stages", {})
    if not isinstance(stages, Mapping):
        raise QuiverPipelineError(f"Invalid lock file at {lock_path}: 'stages' must be a mapping.")
    return {str(name): _entry_from_payload(entry, lock_path) for name, entry in stages.items()}


def write_lock_entry(workspace_root: Path, stage_name: str, entry: LockEntry) -> None:
    """Insert or replace one stage entry in the lock file."""
    entries = read_lock_file(workspace_root)
    entries[stage_name] = entry
    payload = {"stages": {name: _entry_to_payload(item) for name, item in entries.items()}}
    dump_yaml_file(lock_file_path(workspace_root), payload, error_type=QuiverPipelineError)


def _entry_to_payload(entry: LockEntry) -> dict[str, Any]:
    return {
        "cmd": entry.cmd,
        "deps": [{"path": path, "checksum": checksum} for path, checksum in entry.deps.items()],
        "params": {file_name: dict(values) for file_name, values in entry.params.items()},
        "outs": [
            {"path": path, "checksum": checksum, "checksum_type": HASH_ALGORITHM}
            for path, checksum in entry.outs.items()
        ],
    }


def _entry_from_payload(payload: object, lock_path: Path) -> LockEntry:
    if not isinstance(payload, Mapping):
        raise QuiverPipelineError(f"Invalid lock entry in {lock_path}: expected a mapping.")
    try:
        return LockEntry(
            cmd=str(payload["cmd"]),
            deps=_path_rows(payload.get("deps", []), lock_path),
            params={
                str(file_name): dict(values)
                for file_name, values in dict(payload.get("params") or {}).items()
            },
            outs=_path_rows(payload.get("outs", []), lock_path),
        )
    except (KeyError, TypeError, ValueError) as error:
        raise QuiverPipelineError(
            f"Invalid lock entry in {lock_path}: {error}. Re-run the stage to rewrite it."
        ) from error


def _path_rows(rows: object, lock_path: Path) -> dict[str, str]:
    if not isinstance(rows, list):
        raise QuiverPipelineError(f"Invalid lock entry in {lock_path}: expected path lists.")
    return {str(row["path"]): str(row["checksum"]) for row in rows}
