"""Content hashing for files, directories, and structured payloads.

This module provides the deterministic digests that identify cached
objects, directory manifests, and checkpoint snapshots.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from pathlib import Path
from typing import Iterable, Mapping

from core.constants import (
    DIRECTORY_CHECKSUM_SUFFIX,
    HASH_ALGORITHM,
    HASH_CHUNK_SIZE,
    STATE_DIR_NAME,
)
from core.types import DirectoryEntry


def hash_bytes(data: bytes) -> str:
    """Return the hex digest of an in-memory byte payload."""
    hash_builder = hashlib.new(HASH_ALGORITHM)
    hash_builder.update(data)
    return hash_builder.hexdigest()


def hash_payload(payload: Mapping[str, object] | list[object]) -> str:
    """Compute a stable hash for one JSON-compatible payload."""
    normalized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hash_bytes(normalized.encode("utf-8"))


def hash_file(file_path: Path) -> str:
    """Stream a file through the hash algorithm.

    Args:
        file_path: File to hash.

    Returns:
        Hex digest of the file content.
    """
    hash_builder = hashlib.new(HASH_ALGORITHM)
    with file_path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
            hash_builder.update(chunk)
    return hash_builder.hexdigest()


def build_directory_manifest(directory: Path) -> tuple[DirectoryEntry, ...]:
    """Hash every regular file below a directory.

    Args:
        directory: Directory root to walk.

    Returns:
        Entries sorted by POSIX relative path.
    """
    entries: list[DirectoryEntry] = []
    for file_path in directory.rglob("*"):
        if not file_path.is_file():
            continue
        relative_path = file_path.relative_to(directory)
        if STATE_DIR_NAME in relative_path.parts:
            continue
        entries.append(
            DirectoryEntry(
                relpath=relative_path.as_posix(),
                checksum=hash_file(file_path),
                size=file_path.stat().st_size,
            )
        )
    return tuple(sorted(entries, key=lambda entry: entry.relpath))


def directory_checksum(entries: Iterable[DirectoryEntry]) -> str:
    """Return the checksum identifying a directory manifest."""
    payload: list[object] = [asdict(entry) for entry in entries]
    return hash_payload(payload) + DIRECTORY_CHECKSUM_SUFFIX


def is_directory_checksum(checksum: str) -> bool:
    """Return whether a checksum names a directory manifest."""
    return checksum.endswith(DIRECTORY_CHECKSUM_SUFFIX)


def hash_path(path: Path) -> tuple[str, tuple[DirectoryEntry, ...] | None]:
    """Hash a file or directory.

    Args:
        path: Existing file or directory path.

    Returns:
        Pair of checksum and directory manifest (None for files).
    """
    if path.is_dir():
        entries = build_directory_manifest(path)
        return directory_checksum(entries), entries
    return hash_file(path), None
