"""Content-addressed object cache.

This module persists immutable file objects and directory manifests keyed
by checksum. It provides save, checkout, verify, and garbage collection
operations for the tracking, pipeline, and experiment layers.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Iterable, Iterator

from core.constants import STATE_DIR_NAME
from core.errors import QuiverCacheError
from core.hashing import (
    build_directory_manifest,
    directory_checksum,
    hash_file,
    is_directory_checksum,
)
from core.logging_config import get_logger
from core.types import DirectoryEntry

_LOGGER = get_logger(__name__)
_TEMP_PREFIX = ".tmp-"


class ContentCache:
    """Filesystem content cache.

    Objects live at ``<root>/<first two hex chars>/<remaining chars>``.
    Directory objects are JSON manifests whose name keeps the ``.dir`` suffix.
    """

    def __init__(self, root: Path) -> None:
        """Initialize cache at a root directory.

        Args:
            root: Cache root directory, created when missing.
        """
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        """Return cache root directory."""
        return self._root

    def object_path(self, checksum: str) -> Path:
        """Return the object path for a checksum.

        Args:
            checksum: File or directory checksum.

        Returns:
            Path of the cached object, whether or not it exists.

        Raises:
            QuiverCacheError: If the checksum is too short to shard.
        """
        if len(checksum) < 3:
            raise QuiverCacheError(
                f"Invalid checksum '{checksum}': expected a full hex digest. "
                "Re-add the artifact to compute a valid checksum."
            )
        return self._root / checksum[:2] / checksum[2:]

    def contains(self, checksum: str) -> bool:
        """Return whether an object, and every directory entry, is cached."""
        if not self.object_path(checksum).is_file():
            return False
        if not is_directory_checksum(checksum):
            return True
        entries = self.load_directory_manifest(checksum)
        return all(self.object_path(entry.checksum).is_file() for entry in entries)

    def save(self, source: Path) -> tuple[str, tuple[DirectoryEntry, ...] | None]:
        """Save a file or directory into the cache.

        Args:
            source: Existing file or directory.

        Returns:
            Pair of checksum and directory manifest (None for files).

        Raises:
            QuiverCacheError: If the source is missing.
        """
        if source.is_dir():
            return self.save_directory(source)
        if source.is_file():
            return self.save_file(source), None
        raise QuiverCacheError(
            f"Cannot cache missing path {source}. Create the output before saving it."
        )

    def save_file(self, source: Path) -> str:
        """Hash a file and copy it into the cache when absent."""
        checksum = hash_file(source)
        self.add_object(checksum, source)
        return checksum

    def save_directory(self, source: Path) -> tuple[str, tuple[DirectoryEntry, ...]]:
        """Save every file of a directory plus its manifest object.

        Args:
            source: Directory to cache.

        Returns:
            Pair of directory checksum and manifest entries.
        """
        entries = build_directory_manifest(source)
        for entry in entries:
            self.add_object(entry.checksum, source / entry.relpath)
        checksum = directory_checksum(entries)
        self.write_directory_manifest(checksum, entries)
        return checksum, entries

    def add_object(self, checksum: str, source: Path) -> None:
        """Place a file into the cache under a known checksum.

        Args:
            checksum: Checksum of ``source`` content.
            source: File to copy.

        Raises:
            QuiverCacheError: If the copy fails.
        """
        object_path = self.object_path(checksum)
        if object_path.is_file():
            return
        try:
            _atomic_copy(source, object_path)
        except OSError as error:
            raise QuiverCacheError(
                f"Failed to cache {source} as {checksum}: {error}. "
                "Check cache directory permissions and free space."
            ) from error

    def write_directory_manifest(
        self,
        checksum: str,
        entries: Iterable[DirectoryEntry],
    ) -> None:
        """Persist a directory manifest object."""
        object_path = self.object_path(checksum)
        if object_path.is_file():
            return
        payload = [asdict(entry) for entry in entries]
        object_path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=object_path.parent,
            prefix=_TEMP_PREFIX,
            delete=False,
        ) as handle:
            handle.write(json.dumps(payload, sort_keys=True) + "\n")
        os.replace(handle.name, object_path)

    def load_directory_manifest(self, checksum: str) -> tuple[DirectoryEntry, ...]:
        """Load a directory manifest object.

        Args:
            checksum: Directory checksum with ``.dir`` suffix.

        Returns:
            Manifest entries.

        Raises:
            QuiverCacheError: If the manifest is missing or malformed.
        """
        object_path = self.object_path(checksum)
        if not object_path.is_file():
            raise QuiverCacheError(
                f"Directory object {checksum} is not in the cache at {self._root}. "
                "Pull it from a remote or re-add the directory."
            )
        try:
            payload = json.loads(object_path.read_text(encoding="utf-8"))
            return tuple(
                DirectoryEntry(
                    relpath=str(item["relpath"]),
                    checksum=str(item["checksum"]),
                    size=int(item["size"]),
                )
                for item in payload
            )
        except (json.JSONDecodeError, KeyError, TypeError) as error:
            raise QuiverCacheError(
                f"Corrupted directory object {checksum} at {object_path}: {error}. "
                "Remove it and pull or re-add the directory."
            ) from error

    def checkout(self, checksum: str, destination: Path) -> None:
        """Restore a cached file or directory into the workspace.

        Args:
            checksum: Object checksum.
            destination: Workspace path to write.

        Raises:
            QuiverCacheError: If the object or any entry is missing.
        """
        if is_directory_checksum(checksum):
            self._checkout_directory(checksum, destination)
        else:
            self._checkout_file(checksum, destination)
        _LOGGER.debug("cache_checkout", checksum=checksum, destination=str(destination))

    def verify(self, checksum: str) -> bool:
        """Return whether a cached object still matches its checksum."""
        object_path = self.object_path(checksum)
        if not object_path.is_file():
            return False
        if is_directory_checksum(checksum):
            return directory_checksum(self.load_directory_manifest(checksum)) == checksum
        return hash_file(object_path) == checksum

    def expand(self, checksums: Iterable[str]) -> set[str]:
        """Return checksums plus every entry referenced by directory objects."""
        expanded: set[str] = set()
        for checksum in checksums:
            expanded.add(checksum)
            if is_directory_checksum(checksum) and self.object_path(checksum).is_file():
                expanded.update(entry.checksum for entry in self.load_directory_manifest(checksum))
        return expanded

    def iter_checksums(self) -> Iterator[str]:
        """Yield every checksum present in the cache."""
        for shard_dir in sorted(self._root.iterdir()):
            if not shard_dir.is_dir() or len(shard_dir.name) != 2:
                continue
            for object_path in sorted(shard_dir.iterdir()):
                if object_path.is_file() and not object_path.name.startswith(_TEMP_PREFIX):
                    yield shard_dir.name + object_path.name

    def remove(self, checksum: str) -> None:
        """Delete one object from the cache if present."""
        object_path = self.object_path(checksum)
        if object_path.is_file():
            object_path.unlink()

    def collect_garbage(self, used_checksums: Iterable[str]) -> tuple[str, ...]:
        """Remove every object not reachable from the used checksums.

        Args:
            used_checksums: Checksums that must survive.

        Returns:
            Removed checksums in sorted order.
        """
        keep = self.expand(used_checksums)
        removed = [checksum for checksum in self.iter_checksums() if checksum not in keep]
        for checksum in removed:
            self.remove(checksum)
        _LOGGER.info("cache_gc", removed_count=len(removed), kept_count=len(keep))
        return tuple(sorted(removed))

    def _checkout_file(self, checksum: str, destination: Path) -> None:
        object_path = self._require_object(checksum)
        if destination.is_dir():
            shutil.rmtree(destination)
        _atomic_copy(object_path, destination)

    def _checkout_directory(self, checksum: str, destination: Path) -> None:
        entries = self.load_directory_manifest(checksum)
        if destination.is_file():
            destination.unlink()
        destination.mkdir(parents=True, exist_ok=True)
        expected_paths = {entry.relpath for entry in entries}
        for entry in entries:
            target_path = destination / entry.relpath
            object_path = self._require_object(entry.checksum)
            if target_path.is_file() and hash_file(target_path) == entry.checksum:
                continue
            _atomic_copy(object_path, target_path)
        for existing in sorted(destination.rglob("*"), reverse=True):
            relative_path = existing.relative_to(destination)
            if STATE_DIR_NAME in relative_path.parts:
                continue
            if existing.is_file() and relative_path.as_posix() not in expected_paths:
                existing.unlink()
            elif existing.is_dir() and not any(existing.iterdir()):
                existing.rmdir()

    def _require_object(self, checksum: str) -> Path:
        object_path = self.object_path(checksum)
        if not object_path.is_file():
            raise QuiverCacheError(
                f"Object {checksum} is missing from the cache at {self._root}. "
                "Pull it from a remote before checking out."
            )
        return object_path


def _atomic_copy(source: Path, destination: Path) -> None:
    """Copy a file through a temporary sibling and rename into place."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    file_descriptor, temp_name = tempfile.mkstemp(dir=destination.parent, prefix=_TEMP_PREFIX)
    os.close(file_descriptor)
    try:
        shutil.copyfile(source, temp_name)
        os.replace(temp_name, destination)
    except OSError:
        Path(temp_name).unlink(missing_ok=True)
        raise
