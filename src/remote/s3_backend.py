"""S3 storage backend.

This module encapsulates boto3 client creation and object operations for
S3 remotes, S3 external caches, and external artifacts stored in buckets.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator

from core.config import QuiverConfig
from core.errors import QuiverDependencyError, QuiverRemoteError
from core.locations import Location
from remote.base import StorageBackend

_MISSING_ERROR_CODES = {"404", "NoSuchKey", "NotFound"}


class S3Backend(StorageBackend):
    """Backend for ``s3://bucket/key`` locations."""

    scheme = "s3"
    checksum_type = "etag"

    def __init__(self, config: QuiverConfig, client: Any | None = None) -> None:
        """Create backend with a lazily initialized boto3 client.

        Args:
            config: Runtime config with optional session settings.
            client: Optional pre-built S3 client.
        """
        self._config = config
        self._client = client

    @property
    def client(self) -> Any:
        """Return the boto3 S3 client, creating it on first use."""
        if self._client is None:
            self._client = create_s3_client(self._config)
        return self._client

    def exists(self, location: Location) -> bool:
        return self._head(location) is not None or self.is_dir(location)

    def is_dir(self, location: Location) -> bool:
        response = self._call(
            "list",
            location,
            lambda: self.client.list_objects_v2(
                Bucket=location.netloc,
                Prefix=_directory_prefix(location),
                MaxKeys=1,
            ),
        )
        return int(response.get("KeyCount", 0)) > 0

    def file_checksum(self, location: Location) -> str:
        head = self._require_head(location)
        return str(head["ETag"]).strip('"')

    def file_size(self, location: Location) -> int:
        head = self._require_head(location)
        return int(head.get("ContentLength", 0))

    def walk_files(self, location: Location) -> Iterator[Location]:
        paginator = self.client.get_paginator("list_objects_v2")
        pages = paginator.paginate(Bucket=location.netloc, Prefix=_directory_prefix(location))
        keys: list[str] = []
        for page in pages:
            for obj in page.get("Contents", []):
                key = str(obj["Key"])
                if not key.endswith("/"):
                    keys.append(key)
        for key in sorted(keys):
            yield Location("s3", location.netloc, key)

    def upload(self, local_path: Path, location: Location) -> None:
        self._call(
            "upload",
            location,
            lambda: self.client.upload_file(str(local_path), location.netloc, location.path),
        )

    def download(self, location: Location, local_path: Path) -> None:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        self._call(
            "download",
            location,
            lambda: self.client.download_file(location.netloc, location.path, str(local_path)),
        )

    def copy(self, source: Location, destination: Location) -> None:
        copy_source = {"Bucket": source.netloc, "Key": source.path}
        self._call(
            "copy",
            destination,
            lambda: self.client.copy(copy_source, destination.netloc, destination.path),
        )

    def remove(self, location: Location) -> None:
        targets = list(self.walk_files(location)) if self.is_dir(location) else [location]
        for target in targets:
            self._call(
                "delete",
                target,
                lambda target=target: self.client.delete_object(
                    Bucket=target.netloc,
                    Key=target.path,
                ),
            )

    def _head(self, location: Location) -> dict[str, Any] | None:
        if not location.path:
            return None
        try:
            return dict(self.client.head_object(Bucket=location.netloc, Key=location.path))
        except Exception as error:
            if _error_code(error) in _MISSING_ERROR_CODES:
                return None
            raise QuiverRemoteError(
                f"Failed to inspect {location.url}: {error}. "
                "Check AWS credentials and bucket permissions."
            ) from error

    def _require_head(self, location: Location) -> dict[str, Any]:
        head = self._head(location)
        if head is None:
            raise QuiverRemoteError(
                f"Object {location.url} does not exist. Verify the key and retry."
            )
        return head

    def _call(self, action: str, location: Location, operation: Any) -> Any:
        try:
            return operation()
        except Exception as error:
            raise QuiverRemoteError(
                f"Failed to {action} {location.url}: {error}. "
                "Check AWS credentials and bucket permissions."
            ) from error


def create_s3_client(config: QuiverConfig) -> Any:
    """Create boto3 S3 client from runtime config.

    Args:
        config: Runtime config with optional session settings.

    Returns:
        Boto3 S3 client.

    Raises:
        QuiverDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise QuiverDependencyError(
            "S3 storage requires boto3, but it is not installed. "
            "Install boto3 to use s3:// remotes and external caches."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    if config.s3_endpoint_url:
        return session.client("s3", endpoint_url=config.s3_endpoint_url)
    return session.client("s3")


def _directory_prefix(location: Location) -> str:
    if not location.path:
        return ""
    return location.path.rstrip("/") + "/"


def _error_code(error: Exception) -> str | None:
    response = getattr(error, "response", None)
    if not isinstance(response, dict):
        return None
    error_payload = response.get("Error", {})
    if not isinstance(error_payload, dict):
        return None
    code = error_payload.get("Code")
    return str(code) if code is not None else None
