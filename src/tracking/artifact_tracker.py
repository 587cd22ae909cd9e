"""Tracked artifact management.

This module adds workspace and external artifacts, reports their status
against recorded checksums, and restores them from the appropriate cache.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable

from cache.object_cache import ContentCache
from core.config import QuiverConfig
from core.constants import STATE_DIR_NAME, TRACKER_FILE_SUFFIX
from core.errors import QuiverTrackingError
from core.hashing import hash_path
from core.locations import Location, is_external, parse_location
from core.logging_config import get_logger
from core.types import ArtifactStatus, DirectoryEntry, TrackedArtifact, TransferSummary
from remote import transfer
from remote.base import StorageBackend
from remote.factory import backend_for
from remote.registry import RemoteRegistry
from tracking.external_cache import (
    external_cache_contains,
    restore_from_external_cache,
    save_to_external_cache,
)
from tracking.tracker_file import (
    iter_tracker_files,
    read_tracker_file,
    tracker_path_for,
    write_tracker_file,
)

_LOGGER = get_logger(__name__)

BackendFactory = Callable[[Location], StorageBackend]


class ArtifactTracker:
    """Tracker-file based artifact registry for one workspace."""

    def __init__(
        self,
        config: QuiverConfig,
        cache: ContentCache,
        remotes: RemoteRegistry,
        backend_factory: BackendFactory | None = None,
    ) -> None:
        """Create tracker.

        Args:
            config: Runtime configuration.
            cache: Local content cache.
            remotes: Remote and external cache registry.
            backend_factory: Optional override mapping locations to backends.
        """
        self._root = config.workspace_root
        self._cache = cache
        self._remotes = remotes
        self._backend_factory = backend_factory or (
            lambda location: backend_for(location, config)
        )

    def add(self, target: str, external: bool = False) -> TrackedArtifact:
        """Start tracking a workspace path or an external location.

        Args:
            target: Workspace path, external path, or storage URL.
            external: Confirms that the target lives outside the workspace.

        Returns:
            Recorded artifact.

        Raises:
            QuiverTrackingError: If the target is missing, or its location
                disagrees with the ``external`` flag.
        """
        location = parse_location(target, base_dir=self._root)
        if is_external(location, self._root):
            if not external:
                raise QuiverTrackingError(
                    f"{location.url} is outside the workspace. "
                    "Pass external=True (--external) to track it as an external output."
                )
            return self._add_external(location)
        if external:
            raise QuiverTrackingError(
                f"{location.url} is inside the workspace. Add it without --external."
            )
        return self._add_workspace(location.local_path)

    def status(self) -> list[ArtifactStatus]:
        """Compare every tracked artifact with its recorded checksum."""
        return [
            ArtifactStatus(path=artifact.path, state=self._artifact_state(artifact))
            for _, artifact in self._iter_artifacts()
        ]

    def checkout(self, targets: Iterable[str] | None = None) -> list[TrackedArtifact]:
        """Restore artifacts from the cache.

        Args:
            targets: Optional artifact paths or URLs; all artifacts when omitted.

        Returns:
            Artifacts that were rewritten.
        """
        wanted = (
            {self._normalize_target(target) for target in targets} if targets is not None else None
        )
        restored: list[TrackedArtifact] = []
        for _, artifact in self._iter_artifacts():
            if wanted is not None and artifact.path not in wanted:
                continue
            if self._artifact_state(artifact) in {"unchanged", "not_in_cache"}:
                continue
            if artifact.external:
                self._checkout_external(artifact)
            else:
                self._cache.checkout(artifact.checksum, self._root / artifact.path)
            restored.append(artifact)
            _LOGGER.info("artifact_checked_out", path=artifact.path, checksum=artifact.checksum)
        return restored

    def remove(self, target: str) -> Path:
        """Stop tracking an artifact; data and cache objects are kept.

        Returns:
            Deleted tracker file path.

        Raises:
            QuiverTrackingError: If no tracker records the target.
        """
        normalized = self._normalize_target(target)
        for tracker_path, artifact in self._iter_artifacts():
            if normalized in {artifact.path, self._relative(tracker_path)}:
                tracker_path.unlink()
                _LOGGER.info("artifact_untracked", path=artifact.path)
                return tracker_path
        raise QuiverTrackingError(f"'{target}' is not tracked. Run 'status' to list artifacts.")

    def list_tracked(self) -> list[TrackedArtifact]:
        """Return every tracked artifact with workspace-relative paths."""
        return [artifact for _, artifact in self._iter_artifacts()]

    def used_checksums(self) -> set[str]:
        """Return local-cache checksums referenced by workspace artifacts."""
        return {artifact.checksum for artifact in self.list_tracked() if not artifact.external}

    def push(self, remote: str | None = None) -> TransferSummary:
        """Upload cached workspace artifacts to a remote.

        Raises:
            QuiverConfigError: If no matching remote is configured.
        """
        remote_root = self._remotes.resolve(remote)
        return transfer.push(
            self._cache,
            self._backend_factory(remote_root),
            remote_root,
            self.used_checksums(),
        )

    def pull(self, remote: str | None = None) -> TransferSummary:
        """Download workspace artifact objects from a remote and check them out."""
        remote_root = self._remotes.resolve(remote)
        summary = transfer.pull(
            self._cache,
            self._backend_factory(remote_root),
            remote_root,
            self.used_checksums(),
        )
        self.checkout_workspace()
        return summary

    def checkout_workspace(self) -> list[TrackedArtifact]:
        """Restore every workspace (non-external) artifact from the local cache."""
        return self.checkout(
            [artifact.path for artifact in self.list_tracked() if not artifact.external]
        )

    def _add_workspace(self, path: Path) -> TrackedArtifact:
        if not path.exists():
            raise QuiverTrackingError(f"Cannot add {path}: path does not exist.")
        relative_path = self._relative(path)
        if STATE_DIR_NAME in Path(relative_path).parts or relative_path == ".":
            raise QuiverTrackingError(f"Cannot add {path}: it is not a trackable workspace path.")
        if path.name.endswith(TRACKER_FILE_SUFFIX):
            raise QuiverTrackingError(f"Cannot add tracker file {path} as an artifact.")
        checksum, entries = self._cache.save(path)
        artifact = TrackedArtifact(
            path=path.name,
            checksum=checksum,
            checksum_type="sha256",
            size=_total_size(path, entries),
            file_count=len(entries) if entries is not None else None,
        )
        write_tracker_file(tracker_path_for(path), artifact)
        _LOGGER.info("artifact_added", path=relative_path, checksum=checksum, external=False)
        return replace(artifact, path=relative_path)

    def _add_external(self, location: Location) -> TrackedArtifact:
        tracker_path = self._root / f"{location.name}{TRACKER_FILE_SUFFIX}"
        if tracker_path.is_file():
            recorded = read_tracker_file(tracker_path)
            if recorded.path != location.url:
                raise QuiverTrackingError(
                    f"{self._relative(tracker_path)} already tracks {recorded.path}. "
                    f"Remove it before adding {location.url}."
                )
        cache_root = self._external_cache_root(location)
        backend = self._backend_factory(location)
        if not backend.exists(location):
            raise QuiverTrackingError(f"Cannot add {location.url}: location does not exist.")
        checksum, entries = backend.checksum(location)
        save_to_external_cache(backend, cache_root, location, checksum, entries)
        size = (
            sum(entry.size for entry in entries)
            if entries is not None
            else backend.file_size(location)
        )
        artifact = TrackedArtifact(
            path=location.url,
            checksum=checksum,
            checksum_type=backend.checksum_type,
            size=size,
            file_count=len(entries) if entries is not None else None,
            external=True,
        )
        write_tracker_file(tracker_path, artifact)
        _LOGGER.info(
            "artifact_added",
            path=location.url,
            checksum=checksum,
            external=True,
            external_cache=cache_root.url,
        )
        return artifact

    def _artifact_state(self, artifact: TrackedArtifact) -> str:
        if artifact.external:
            return self._external_state(artifact)
        path = self._root / artifact.path
        if not path.exists():
            return "deleted"
        checksum, _ = hash_path(path)
        if checksum != artifact.checksum:
            return "modified"
        if not self._cache.contains(artifact.checksum):
            return "not_in_cache"
        return "unchanged"

    def _external_state(self, artifact: TrackedArtifact) -> str:
        location = parse_location(artifact.path, base_dir=self._root)
        backend = self._backend_factory(location)
        if not backend.exists(location):
            return "deleted"
        checksum, _ = backend.checksum(location)
        if checksum != artifact.checksum:
            return "modified"
        cache_root = self._remotes.external_cache_for(location.scheme)
        if cache_root is None or not external_cache_contains(backend, cache_root, checksum):
            return "not_in_cache"
        return "unchanged"

    def _checkout_external(self, artifact: TrackedArtifact) -> None:
        location = parse_location(artifact.path, base_dir=self._root)
        backend = self._backend_factory(location)
        restore_from_external_cache(
            backend,
            self._external_cache_root(location),
            artifact.checksum,
            location,
        )

    def _external_cache_root(self, location: Location) -> Location:
        cache_root = self._remotes.external_cache_for(location.scheme)
        if cache_root is None:
            raise QuiverTrackingError(
                f"No external cache is configured for '{location.scheme}' locations. "
                f"Set one with 'cache external URL' before adding {location.url}."
            )
        return cache_root

    def _iter_artifacts(self) -> Iterable[tuple[Path, TrackedArtifact]]:
        for tracker_path in iter_tracker_files(self._root):
            artifact = read_tracker_file(tracker_path)
            if not artifact.external:
                artifact = replace(
                    artifact,
                    path=self._relative(tracker_path.parent / artifact.path),
                )
            yield tracker_path, artifact

    def _normalize_target(self, target: str) -> str:
        if "://" in target:
            return target
        location = parse_location(target, base_dir=self._root)
        if is_external(location, self._root):
            return location.url
        return self._relative(location.local_path)

    def _relative(self, path: Path) -> str:
        return path.resolve().relative_to(self._root.resolve()).as_posix()


def _total_size(path: Path, entries: tuple[DirectoryEntry, ...] | None) -> int:
    if entries is None:
        return path.stat().st_size
    return sum(entry.size for entry in entries)
