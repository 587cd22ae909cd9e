"""Immutable checkpoint object persistence.

Checkpoints are JSON objects stored under ``.quiver/objects/<hh>/<rest>``.
Their identifier is derived from the parent id, step, outputs, metrics, and
params, so identical snapshots of the same chain share one object.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Mapping

from core.constants import OBJECTS_DIR_NAME
from core.errors import QuiverExperimentError
from core.hashing import hash_payload
from core.json_io import read_json_file, write_json_file
from core.types import Checkpoint


def build_checkpoint_id(
    parent_id: str | None,
    step: int,
    outputs: Mapping[str, str],
    metrics: Mapping[str, float],
    params: Mapping[str, object],
) -> str:
    """Compute the content-derived identifier of a checkpoint."""
    return hash_payload(
        {
            "parent_id": parent_id,
            "step": step,
            "outputs": dict(outputs),
            "metrics": dict(metrics),
            "params": dict(params),
        }
    )


class CheckpointStore:
    """Content-addressed store of checkpoint objects."""

    def __init__(self, state_dir: Path) -> None:
        self._root = state_dir / OBJECTS_DIR_NAME

    def create(
        self,
        experiment: str,
        parent_id: str | None,
        outputs: Mapping[str, str],
        metrics: Mapping[str, float],
        params: Mapping[str, object],
    ) -> Checkpoint:
        """Build and persist the checkpoint following ``parent_id``.

        Args:
            experiment: Experiment the checkpoint is created under.
            parent_id: Predecessor checkpoint id, or None for a chain root.
            outputs: Output path to cached checksum mapping.
            metrics: Flattened numeric metrics.
            params: Parameter values in effect.

        Returns:
            The stored checkpoint.
        """
        step = self.read(parent_id).step + 1 if parent_id else 1
        checkpoint = Checkpoint(
            checkpoint_id=build_checkpoint_id(parent_id, step, outputs, metrics, params),
            experiment=experiment,
            parent_id=parent_id,
            step=step,
            outputs=dict(outputs),
            metrics=dict(metrics),
            params=dict(params),
            created_at=datetime.now(timezone.utc),
        )
        self.write(checkpoint)
        return checkpoint

    def write(self, checkpoint: Checkpoint) -> None:
        """Persist a checkpoint; writing an existing id is a no-op."""
        object_path = self._object_path(checkpoint.checkpoint_id)
        if object_path.is_file():
            return
        write_json_file(
            object_path,
            {
                "checkpoint_id": checkpoint.checkpoint_id,
                "experiment": checkpoint.experiment,
                "parent_id": checkpoint.parent_id,
                "step": checkpoint.step,
                "outputs": dict(checkpoint.outputs),
                "metrics": dict(checkpoint.metrics),
                "params": dict(checkpoint.params),
                "created_at": checkpoint.created_at.isoformat(),
            },
            error_type=QuiverExperimentError,
        )

    def exists(self, checkpoint_id: str) -> bool:
        """Return whether a full checkpoint id is stored."""
        return len(checkpoint_id) > 2 and self._object_path(checkpoint_id).is_file()

    def read(self, checkpoint_id: str) -> Checkpoint:
        """Load one checkpoint by full id.

        Raises:
            QuiverExperimentError: If the checkpoint is unknown or malformed.
        """
        object_path = self._object_path(checkpoint_id)
        if not object_path.is_file():
            raise QuiverExperimentError(
                f"Checkpoint '{checkpoint_id}' not found. Use 'quiver exp show' to list ids."
            )
        payload = read_json_file(object_path, error_type=QuiverExperimentError)
        if not isinstance(payload, dict):
            raise QuiverExperimentError(f"Invalid checkpoint object at {object_path}.")
        try:
            return Checkpoint(
                checkpoint_id=str(payload["checkpoint_id"]),
                experiment=str(payload["experiment"]),
                parent_id=payload.get("parent_id"),
                step=int(payload["step"]),
                outputs={str(key): str(value) for key, value in payload["outputs"].items()},
                metrics={str(key): float(value) for key, value in payload["metrics"].items()},
                params=dict(payload.get("params") or {}),
                created_at=datetime.fromisoformat(str(payload["created_at"])),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as error:
            raise QuiverExperimentError(
                f"Invalid checkpoint object at {object_path}: {error}."
            ) from error

    def resolve(self, prefix: str) -> str:
        """Expand an unambiguous checkpoint id prefix to the full id.

        Raises:
            QuiverExperimentError: If no or several checkpoints match.
        """
        if len(prefix) < 4:
            raise QuiverExperimentError(
                f"Checkpoint id '{prefix}' is too short. Use at least 4 characters."
            )
        shard_dir = self._root / prefix[:2]
        matches = (
            sorted(
                prefix[:2] + path.name
                for path in shard_dir.iterdir()
                if path.is_file() and path.name.startswith(prefix[2:])
            )
            if shard_dir.is_dir()
            else []
        )
        if not matches:
            raise QuiverExperimentError(f"Unknown checkpoint '{prefix}'.")
        if len(matches) > 1:
            raise QuiverExperimentError(
                f"Checkpoint id '{prefix}' is ambiguous; it matches {len(matches)} checkpoints. "
                "Provide more characters."
            )
        return matches[0]

    def iter_chain(self, head_id: str) -> Iterator[Checkpoint]:
        """Yield a checkpoint and its predecessors, newest first."""
        current_id: str | None = head_id
        while current_id:
            checkpoint = self.read(current_id)
            yield checkpoint
            current_id = checkpoint.parent_id

    def all_ids(self) -> list[str]:
        """Return every stored checkpoint id in sorted order."""
        if not self._root.is_dir():
            return []
        return sorted(
            shard_dir.name + object_path.name
            for shard_dir in self._root.iterdir()
            if shard_dir.is_dir()
            for object_path in shard_dir.iterdir()
            if object_path.is_file()
        )

    def delete(self, checkpoint_id: str) -> None:
        """Remove one checkpoint object if present."""
        object_path = self._object_path(checkpoint_id)
        object_path.unlink(missing_ok=True)
        if object_path.parent.is_dir() and not any(object_path.parent.iterdir()):
            object_path.parent.rmdir()

    def _object_path(self, checkpoint_id: str) -> Path:
        return self._root / checkpoint_id[:2] / checkpoint_id[2:]
