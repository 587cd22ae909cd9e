"""Local filesystem storage backend.

Serves local remotes, local external caches, and external artifacts that
live on the same machine but outside the workspace.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterator

from core.errors import QuiverRemoteError
from core.hashing import hash_file
from core.locations import Location
from remote.base import StorageBackend


class LocalBackend(StorageBackend):
    """Backend for plain filesystem paths."""

    scheme = "local"
    checksum_type = "sha256"

    def exists(self, location: Location) -> bool:
        return location.local_path.exists()

    def is_dir(self, location: Location) -> bool:
        return location.local_path.is_dir()

    def file_checksum(self, location: Location) -> str:
        return hash_file(self._require_file(location))

    def file_size(self, location: Location) -> int:
        return self._require_file(location).stat().st_size

    def walk_files(self, location: Location) -> Iterator[Location]:
        root = location.local_path
        if not root.is_dir():
            return
        for file_path in sorted(root.rglob("*")):
            if file_path.is_file():
                yield Location(location.scheme, "", str(file_path))

    def upload(self, local_path: Path, location: Location) -> None:
        _copy_file(local_path, location.local_path)

    def download(self, location: Location, local_path: Path) -> None:
        _copy_file(self._require_file(location), local_path)

    def copy(self, source: Location, destination: Location) -> None:
        _copy_file(self._require_file(source), destination.local_path)

    def remove(self, location: Location) -> None:
        target = location.local_path
        try:
            if target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
        except OSError as error:
            raise QuiverRemoteError(
                f"Failed to remove {target}: {error}. Check filesystem permissions."
            ) from error

    def _require_file(self, location: Location) -> Path:
        file_path = location.local_path
        if not file_path.is_file():
            raise QuiverRemoteError(
                f"Expected a file at {file_path}. Verify the path and retry."
            )
        return file_path


def _copy_file(source: Path, destination: Path) -> None:
    """Copy a file atomically, creating parent directories."""
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        file_descriptor, temp_name = tempfile.mkstemp(dir=destination.parent, prefix=".tmp-")
        os.close(file_descriptor)
        shutil.copyfile(source, temp_name)
        os.replace(temp_name, destination)
    except OSError as error:
        raise QuiverRemoteError(
            f"Failed to copy {source} to {destination}: {error}. "
            "Check filesystem permissions and free space."
        ) from error
