"""Object transfer between the local cache and a remote.

Remote object keys mirror the cache layout so every backend stores the
same ``<hh>/<rest>`` tree. Downloads are verified before entering the cache.
"""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Iterable

from cache.object_cache import ContentCache
from core.errors import QuiverCacheError, QuiverRemoteError
from core.hashing import directory_checksum, hash_file, is_directory_checksum
from core.locations import Location
from core.logging_config import get_logger
from core.types import DirectoryEntry, TransferSummary
from remote.base import StorageBackend

_LOGGER = get_logger(__name__)


def remote_object_location(remote_root: Location, checksum: str) -> Location:
    """Return the remote location of one cached object."""
    return remote_root.join(checksum[:2], checksum[2:])


def push(
    cache: ContentCache,
    backend: StorageBackend,
    remote_root: Location,
    checksums: Iterable[str],
) -> TransferSummary:
    """Upload cached objects missing on the remote.

    Args:
        cache: Local content cache.
        backend: Backend serving the remote root.
        remote_root: Remote storage root.
        checksums: Requested checksums; directory objects are expanded.

    Returns:
        Transfer summary.

    Raises:
        QuiverCacheError: If a requested object is missing locally.
    """
    transferred: list[str] = []
    skipped: list[str] = []
    for checksum in sorted(cache.expand(checksums)):
        object_path = cache.object_path(checksum)
        if not object_path.is_file():
            raise QuiverCacheError(
                f"Cannot push {checksum}: object is missing from the local cache. "
                "Re-add or pull the artifact first."
            )
        target = remote_object_location(remote_root, checksum)
        if backend.exists(target):
            skipped.append(checksum)
            continue
        backend.upload(object_path, target)
        transferred.append(checksum)
    _LOGGER.info(
        "remote_push",
        remote=remote_root.url,
        transferred=len(transferred),
        skipped=len(skipped),
    )
    return TransferSummary(transferred=tuple(transferred), skipped=tuple(skipped))


def pull(
    cache: ContentCache,
    backend: StorageBackend,
    remote_root: Location,
    checksums: Iterable[str],
    optional: Iterable[str] = (),
) -> TransferSummary:
    """Download objects missing from the local cache.

    Directory manifests are fetched first so their entries can be pulled.
    Optional objects absent on the remote are left out instead of failing.

    Args:
        cache: Local content cache.
        backend: Backend serving the remote root.
        remote_root: Remote storage root.
        checksums: Required checksums.
        optional: Checksums fetched only when the remote stores them.

    Returns:
        Transfer summary.

    Raises:
        QuiverRemoteError: If a required object is missing remotely or a
            downloaded object fails verification.
    """
    transferred: list[str] = []
    skipped: list[str] = []
    required = set(checksums)
    best_effort = set(optional) - required
    for checksum in sorted(required | best_effort):
        if is_directory_checksum(checksum):
            _pull_one(
                cache,
                backend,
                remote_root,
                checksum,
                transferred,
                skipped,
                strict=checksum in required,
            )
    strict_expanded = cache.expand(required)
    for checksum in sorted(strict_expanded | cache.expand(best_effort)):
        if checksum in transferred or checksum in skipped:
            continue
        _pull_one(
            cache,
            backend,
            remote_root,
            checksum,
            transferred,
            skipped,
            strict=checksum in strict_expanded,
        )
    _LOGGER.info(
        "remote_pull",
        remote=remote_root.url,
        transferred=len(transferred),
        skipped=len(skipped),
    )
    return TransferSummary(transferred=tuple(transferred), skipped=tuple(skipped))


def missing_on_remote(
    cache: ContentCache,
    backend: StorageBackend,
    remote_root: Location,
    checksums: Iterable[str],
) -> tuple[str, ...]:
    """Return expanded checksums that are not stored on the remote."""
    return tuple(
        checksum
        for checksum in sorted(cache.expand(checksums))
        if not backend.exists(remote_object_location(remote_root, checksum))
    )


def _pull_one(
    cache: ContentCache,
    backend: StorageBackend,
    remote_root: Location,
    checksum: str,
    transferred: list[str],
    skipped: list[str],
    strict: bool = True,
) -> None:
    if cache.object_path(checksum).is_file():
        skipped.append(checksum)
        return
    source = remote_object_location(remote_root, checksum)
    if not strict and not backend.exists(source):
        _LOGGER.info("remote_object_absent", checksum=checksum, remote=remote_root.url)
        return
    cache.root.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(dir=cache.root, prefix=".tmp-pull-") as temp_dir:
        staging_path = Path(temp_dir) / "object"
        backend.download(source, staging_path)
        actual = _staged_checksum(staging_path, checksum)
        if actual != checksum:
            raise QuiverRemoteError(
                f"Downloaded object from {source.url} is corrupted: expected {checksum}, "
                f"got {actual}. Re-push the object from a healthy cache."
            )
        cache.add_object(checksum, staging_path)
    transferred.append(checksum)


def _staged_checksum(staging_path: Path, expected: str) -> str:
    if not is_directory_checksum(expected):
        return hash_file(staging_path)
    try:
        payload = json.loads(staging_path.read_text(encoding="utf-8"))
        entries = [
            DirectoryEntry(
                relpath=str(item["relpath"]),
                checksum=str(item["checksum"]),
                size=int(item["size"]),
            )
            for item in payload
        ]
    except (json.JSONDecodeError, KeyError, TypeError) as error:
        raise QuiverRemoteError(
            f"Downloaded directory object {expected} is not a valid manifest: {error}."
        ) from error
    return directory_checksum(entries)
