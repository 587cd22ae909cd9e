"""WebHDFS storage backend.

This module talks to the WebHDFS REST gateway with requests. File
creation follows the two-step redirect protocol of the name node.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Iterator

from core.config import QuiverConfig
from core.constants import DEFAULT_WEBHDFS_TIMEOUT_SECONDS
from core.errors import QuiverDependencyError, QuiverRemoteError
from core.locations import Location
from remote.base import StorageBackend

_DEFAULT_WEBHDFS_PORT = 9870
_DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class WebHdfsBackend(StorageBackend):
    """Backend for ``webhdfs://host:port/path`` locations."""

    scheme = "webhdfs"
    checksum_type = "webhdfs"

    def __init__(self, config: QuiverConfig, session: Any | None = None) -> None:
        """Create backend with a lazily initialized HTTP session.

        Args:
            config: Runtime config with optional WebHDFS user.
            session: Optional pre-built requests session.
        """
        self._config = config
        self._session = session

    @property
    def session(self) -> Any:
        """Return the requests session, creating it on first use."""
        if self._session is None:
            try:
                import requests
            except ImportError as error:
                raise QuiverDependencyError(
                    "WebHDFS storage requires requests, but it is not installed. "
                    "Install requests to use webhdfs:// locations."
                ) from error
            self._session = requests.Session()
        return self._session

    def exists(self, location: Location) -> bool:
        return self._file_status(location) is not None

    def is_dir(self, location: Location) -> bool:
        status = self._file_status(location)
        return status is not None and status.get("type") == "DIRECTORY"

    def file_checksum(self, location: Location) -> str:
        response = self._request("GET", location, "GETFILECHECKSUM")
        payload = _json_payload(response, location)
        return str(payload["FileChecksum"]["bytes"])

    def file_size(self, location: Location) -> int:
        status = self._file_status(location)
        if status is None:
            raise QuiverRemoteError(f"File {location.url} does not exist on WebHDFS.")
        return int(status.get("length", 0))

    def walk_files(self, location: Location) -> Iterator[Location]:
        response = self._request("GET", location, "LISTSTATUS")
        payload = _json_payload(response, location)
        statuses = payload["FileStatuses"]["FileStatus"]
        for status in sorted(statuses, key=lambda item: str(item["pathSuffix"])):
            child = location.join(str(status["pathSuffix"]))
            if status.get("type") == "DIRECTORY":
                yield from self.walk_files(child)
            else:
                yield child

    def upload(self, local_path: Path, location: Location) -> None:
        redirect = self._request(
            "PUT",
            location,
            "CREATE",
            extra_params={"overwrite": "true"},
            allow_redirects=False,
        )
        if redirect.status_code == 201:
            return
        data_node_url = redirect.headers.get("Location")
        if not data_node_url:
            raise QuiverRemoteError(
                f"WebHDFS CREATE for {location.url} returned no redirect location. "
                "Check the name node configuration."
            )
        with local_path.open("rb") as handle:
            response = self._send("PUT", data_node_url, location, data=handle)
        _raise_for_status(response, location)

    def download(self, location: Location, local_path: Path) -> None:
        response = self._request("GET", location, "OPEN", stream=True)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        file_descriptor, temp_name = tempfile.mkstemp(dir=local_path.parent, prefix=".tmp-")
        with os.fdopen(file_descriptor, "wb") as handle:
            for chunk in response.iter_content(chunk_size=_DOWNLOAD_CHUNK_SIZE):
                if chunk:
                    handle.write(chunk)
        os.replace(temp_name, local_path)

    def copy(self, source: Location, destination: Location) -> None:
        with tempfile.TemporaryDirectory(prefix="quiver-webhdfs-") as temp_dir:
            staging_path = Path(temp_dir) / "object"
            self.download(source, staging_path)
            self.upload(staging_path, destination)

    def remove(self, location: Location) -> None:
        self._request("DELETE", location, "DELETE", extra_params={"recursive": "true"})

    def _file_status(self, location: Location) -> dict[str, Any] | None:
        response = self._request("GET", location, "GETFILESTATUS", allow_missing=True)
        if response.status_code == 404:
            return None
        return dict(_json_payload(response, location)["FileStatus"])

    def _request(
        self,
        method: str,
        location: Location,
        operation: str,
        extra_params: dict[str, str] | None = None,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> Any:
        params = {"op": operation}
        user = location.user or self._config.webhdfs_user
        if user:
            params["user.name"] = user
        if extra_params:
            params.update(extra_params)
        response = self._send(method, _endpoint_url(location), location, params=params, **kwargs)
        if allow_missing and response.status_code == 404:
            return response
        if kwargs.get("allow_redirects") is False and response.status_code in {301, 302, 307}:
            return response
        _raise_for_status(response, location)
        return response

    def _send(self, method: str, url: str, location: Location, **kwargs: Any) -> Any:
        try:
            return self.session.request(
                method,
                url,
                timeout=DEFAULT_WEBHDFS_TIMEOUT_SECONDS,
                **kwargs,
            )
        except OSError as error:
            raise QuiverRemoteError(
                f"WebHDFS request {method} {location.url} failed: {error}. "
                "Check that the name node is reachable."
            ) from error


def _endpoint_url(location: Location) -> str:
    port = location.port or _DEFAULT_WEBHDFS_PORT
    return f"http://{location.host}:{port}/webhdfs/v1{location.path}"


def _raise_for_status(response: Any, location: Location) -> None:
    if int(response.status_code) < 400:
        return
    raise QuiverRemoteError(
        f"WebHDFS request for {location.url} failed with HTTP {response.status_code}: "
        f"{getattr(response, 'text', '')}. Check permissions and path."
    )


def _json_payload(response: Any, location: Location) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as error:
        raise QuiverRemoteError(
            f"WebHDFS returned a non-JSON response for {location.url}: {error}."
        ) from error
    if not isinstance(payload, dict):
        raise QuiverRemoteError(f"WebHDFS returned an unexpected payload for {location.url}.")
    return payload
