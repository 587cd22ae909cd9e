"""Backend selection by location scheme."""

from __future__ import annotations

from core.config import QuiverConfig
from core.errors import QuiverRemoteError
from core.locations import Location
from remote.base import StorageBackend
from remote.command_backend import HdfsBackend, SshBackend
from remote.local_backend import LocalBackend
from remote.s3_backend import S3Backend
from remote.webhdfs_backend import WebHdfsBackend


def backend_for(location: Location, config: QuiverConfig) -> StorageBackend:
    """Return the storage backend serving a location.

    Args:
        location: Parsed storage location.
        config: Runtime config for client settings.

    Returns:
        Backend instance for the location scheme.

    Raises:
        QuiverRemoteError: If no backend handles the scheme.
    """
    if location.scheme == "local":
        return LocalBackend()
    if location.scheme == "s3":
        return S3Backend(config)
    if location.scheme == "webhdfs":
        return WebHdfsBackend(config)
    if location.scheme == "hdfs":
        return HdfsBackend()
    if location.scheme == "ssh":
        return SshBackend()
    raise QuiverRemoteError(f"No storage backend is registered for scheme '{location.scheme}'.")
