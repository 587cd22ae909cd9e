"""Storage location parsing helpers.

This module maps local paths and storage URLs onto one typed location
model shared by the tracking, remote, and cache layers. It keeps URL
validation behavior consistent across the codebase.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

from core.constants import LOCAL_SCHEME, SUPPORTED_SCHEMES
from core.errors import QuiverRemoteError


@dataclass(frozen=True)
class Location:
    """Parsed storage location.

    Attributes:
        scheme: One of local, s3, ssh, hdfs, webhdfs.
        netloc: Bucket for s3, ``[user@]host[:port]`` for network schemes,
            empty for local paths.
        path: Absolute path; object key without leading slash for s3.
    """

    scheme: str
    netloc: str
    path: str

    @property
    def url(self) -> str:
        """Return the canonical string form of this location."""
        if self.scheme == LOCAL_SCHEME:
            return self.path
        if self.scheme == "s3":
            return f"s3://{self.netloc}/{self.path}" if self.path else f"s3://{self.netloc}"
        return f"{self.scheme}://{self.netloc}{self.path}"

    @property
    def name(self) -> str:
        """Return the final path segment."""
        return posixpath.basename(self.path.rstrip("/"))

    @property
    def user(self) -> str | None:
        """Return the user component of network locations."""
        if "@" not in self.netloc:
            return None
        return self.netloc.split("@", 1)[0]

    @property
    def host(self) -> str:
        """Return the host component without user or port."""
        host_port = self.netloc.split("@", 1)[-1]
        return host_port.split(":", 1)[0]

    @property
    def port(self) -> int | None:
        """Return the explicit port of network locations."""
        host_port = self.netloc.split("@", 1)[-1]
        if ":" not in host_port:
            return None
        return int(host_port.split(":", 1)[1])

    @property
    def local_path(self) -> Path:
        """Return the filesystem path of a local location.

        Raises:
            QuiverRemoteError: If this is not a local location.
        """
        if self.scheme != LOCAL_SCHEME:
            raise QuiverRemoteError(
                f"Location {self.url} is not a local path. Use a storage backend to access it."
            )
        return Path(self.path)

    def join(self, *parts: str) -> "Location":
        """Return a child location."""
        if self.scheme == LOCAL_SCHEME:
            return Location(self.scheme, self.netloc, str(Path(self.path).joinpath(*parts)))
        joined = posixpath.join(self.path, *parts) if self.path else posixpath.join(*parts)
        return Location(self.scheme, self.netloc, joined)

    def relative_to(self, root: "Location") -> str:
        """Return this location's POSIX path relative to a root location."""
        if self.scheme == LOCAL_SCHEME:
            return Path(self.path).relative_to(Path(root.path)).as_posix()
        return posixpath.relpath(self.path, root.path or ".")

    def contains(self, other: "Location") -> bool:
        """Return whether ``other`` equals or lives below this location."""
        if (self.scheme, self.netloc) != (other.scheme, other.netloc):
            return False
        root = self.path.rstrip("/")
        candidate = other.path.rstrip("/")
        return candidate == root or candidate.startswith(root + "/") or root == ""


def parse_location(value: str, base_dir: Path | None = None) -> Location:
    """Parse and validate a storage URL or local path.

    Args:
        value: ``s3://bucket/key``, ``ssh://[user@]host[:port]/path``,
            ``hdfs://[host[:port]]/path``, ``webhdfs://host:port/path``,
            ``file:///path``, or a filesystem path.
        base_dir: Directory used to resolve relative local paths.

    Returns:
        Parsed location.

    Raises:
        QuiverRemoteError: If the URL is malformed or the scheme is unsupported.
    """
    if "://" not in value:
        return _local_location(value, base_dir)
    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme == "file":
        return _local_location(parts.path, base_dir)
    if scheme not in SUPPORTED_SCHEMES:
        supported = ", ".join(SUPPORTED_SCHEMES)
        raise QuiverRemoteError(
            f"Unsupported storage scheme '{scheme}' in {value}. Use one of: {supported}."
        )
    if scheme == "s3":
        return _s3_location(value, parts.netloc, parts.path)
    if scheme in {"ssh", "webhdfs"} and not parts.hostname:
        raise QuiverRemoteError(
            f"Invalid {scheme} URL '{value}': expected {scheme}://host/path. Provide a host name."
        )
    _validate_port(value, parts.netloc)
    path = parts.path or "/"
    return Location(scheme=scheme, netloc=parts.netloc, path=posixpath.normpath(path))


def is_external(location: Location, workspace_root: Path) -> bool:
    """Return whether a location lives outside the workspace."""
    if location.scheme != LOCAL_SCHEME:
        return True
    resolved_root = workspace_root.resolve()
    candidate = Path(location.path).resolve()
    return candidate != resolved_root and resolved_root not in candidate.parents


def location_scheme_key(value: str) -> str:
    """Return the scheme used to group external caches for a URL or path."""
    if "://" not in value:
        return LOCAL_SCHEME
    scheme = urlsplit(value).scheme.lower()
    return LOCAL_SCHEME if scheme == "file" else scheme


def _local_location(raw_path: str, base_dir: Path | None) -> Location:
    path = Path(raw_path).expanduser()
    if not path.is_absolute():
        path = (base_dir or Path.cwd()) / path
    return Location(scheme=LOCAL_SCHEME, netloc="", path=str(path.resolve()))


def _s3_location(value: str, bucket: str, raw_key: str) -> Location:
    if not bucket:
        raise QuiverRemoteError(
            f"Invalid S3 URL '{value}': expected s3://bucket[/key]. Provide a bucket name."
        )
    key = raw_key.strip("/")
    # Empty key addresses the bucket root.
    return Location(scheme="s3", netloc=bucket, path=posixpath.normpath(key) if key else "")


def _validate_port(value: str, netloc: str) -> None:
    host_port = netloc.split("@", 1)[-1]
    if ":" not in host_port:
        return
    raw_port = host_port.split(":", 1)[1]
    if not raw_port.isdigit():
        raise QuiverRemoteError(
            f"Invalid port '{raw_port}' in {value}. Use a numeric port such as :22."
        )
