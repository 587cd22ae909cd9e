"""External cache operations.

An external cache lives on the same storage type as the external artifacts
it serves, so saving and restoring are backend-side copies and the data is
never routed through the local project.
"""

from __future__ import annotations

import json
import tempfile
from dataclasses import asdict
from pathlib import Path

from core.errors import QuiverCacheError
from core.hashing import is_directory_checksum
from core.locations import Location
from core.logging_config import get_logger
from core.types import DirectoryEntry
from remote.base import StorageBackend
from remote.transfer import remote_object_location

_LOGGER = get_logger(__name__)


def save_to_external_cache(
    backend: StorageBackend,
    cache_root: Location,
    source: Location,
    checksum: str,
    entries: tuple[DirectoryEntry, ...] | None,
) -> None:
    """Copy an external artifact into its external cache.

    Args:
        backend: Backend serving both the artifact and the cache.
        cache_root: External cache root location.
        source: Artifact location.
        checksum: Artifact checksum.
        entries: Directory manifest for directory artifacts.
    """
    if entries is None:
        _copy_if_missing(backend, source, remote_object_location(cache_root, checksum))
        return
    for entry in entries:
        _copy_if_missing(
            backend,
            source.join(*entry.relpath.split("/")),
            remote_object_location(cache_root, entry.checksum),
        )
    manifest_location = remote_object_location(cache_root, checksum)
    if backend.exists(manifest_location):
        return
    with tempfile.TemporaryDirectory(prefix="quiver-manifest-") as temp_dir:
        manifest_path = Path(temp_dir) / "manifest.json"
        payload = [asdict(entry) for entry in entries]
        manifest_path.write_text(json.dumps(payload, sort_keys=True) + "\n", encoding="utf-8")
        backend.upload(manifest_path, manifest_location)
    _LOGGER.info("external_cache_saved", source=source.url, checksum=checksum)


def external_cache_contains(backend: StorageBackend, cache_root: Location, checksum: str) -> bool:
    """Return whether the external cache holds an object."""
    return backend.exists(remote_object_location(cache_root, checksum))


def restore_from_external_cache(
    backend: StorageBackend,
    cache_root: Location,
    checksum: str,
    destination: Location,
) -> None:
    """Copy an artifact from its external cache back to its location.

    Raises:
        QuiverCacheError: If the cached object is missing.
    """
    object_location = remote_object_location(cache_root, checksum)
    if not backend.exists(object_location):
        raise QuiverCacheError(
            f"Object {checksum} is missing from external cache {cache_root.url}. "
            "Re-add the external artifact to repopulate the cache."
        )
    if not is_directory_checksum(checksum):
        backend.copy(object_location, destination)
        return
    for entry in _load_remote_manifest(backend, object_location):
        backend.copy(
            remote_object_location(cache_root, entry.checksum),
            destination.join(*entry.relpath.split("/")),
        )


def _copy_if_missing(backend: StorageBackend, source: Location, target: Location) -> None:
    if not backend.exists(target):
        backend.copy(source, target)


def _load_remote_manifest(
    backend: StorageBackend,
    manifest_location: Location,
) -> tuple[DirectoryEntry, ...]:
    with tempfile.TemporaryDirectory(prefix="quiver-manifest-") as temp_dir:
        manifest_path = Path(temp_dir) / "manifest.json"
        backend.download(manifest_location, manifest_path)
        try:
            payload = json.loads(manifest_path.read_text(encoding="utf-8"))
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
                f"Corrupted directory manifest at {manifest_location.url}: {error}."
            ) from error
