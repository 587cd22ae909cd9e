"""Persistent remote and external cache definitions.

This module stores named push/pull remotes and per-scheme external caches
in the workspace state directory. It enforces that an external cache never
overlaps a push/pull remote, so checksums of different flavours never share
one object namespace.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from core.constants import REMOTES_FILE_NAME
from core.errors import QuiverConfigError
from core.json_io import read_json_file, write_json_file
from core.locations import Location, location_scheme_key, parse_location
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True)
class RemoteDefinition:
    """Named push/pull remote."""

    name: str
    url: str
    is_default: bool


class RemoteRegistry:
    """JSON-backed registry of remotes and external caches."""

    def __init__(self, state_dir: Path, workspace_root: Path) -> None:
        self._registry_path = state_dir / REMOTES_FILE_NAME
        self._workspace_root = workspace_root

    def add_remote(self, name: str, url: str, default: bool = False) -> RemoteDefinition:
        """Register a push/pull remote.

        Args:
            name: Remote name.
            url: Storage URL or local path.
            default: Make this the default remote.

        Returns:
            Stored remote definition.

        Raises:
            QuiverConfigError: If the name is invalid, taken, or the URL
                overlaps an external cache.
        """
        _validate_name(name)
        payload = self._read()
        remotes = payload["remotes"]
        if name in remotes:
            raise QuiverConfigError(
                f"Remote '{name}' already exists. Remove it first or choose another name."
            )
        location = self._parse(url)
        for scheme, cache_url in payload["external_caches"].items():
            self._ensure_disjoint(location, self._parse(cache_url), f"external cache for {scheme}")
        remotes[name] = location.url
        if default or payload["default"] is None:
            payload["default"] = name
        self._write(payload)
        _LOGGER.info("remote_added", name=name, url=location.url)
        return RemoteDefinition(name=name, url=location.url, is_default=payload["default"] == name)

    def remove_remote(self, name: str) -> None:
        """Delete a push/pull remote.

        Raises:
            QuiverConfigError: If the remote does not exist.
        """
        payload = self._read()
        if name not in payload["remotes"]:
            raise QuiverConfigError(f"Remote '{name}' is not defined. Run 'remote list'.")
        del payload["remotes"][name]
        if payload["default"] == name:
            payload["default"] = next(iter(sorted(payload["remotes"])), None)
        self._write(payload)
        _LOGGER.info("remote_removed", name=name)

    def list_remotes(self) -> list[RemoteDefinition]:
        """Return remotes sorted by name."""
        payload = self._read()
        return [
            RemoteDefinition(name=name, url=url, is_default=payload["default"] == name)
            for name, url in sorted(payload["remotes"].items())
        ]

    def default_remote(self) -> str | None:
        """Return the default remote name, if one is set."""
        return self._read()["default"]

    def resolve(self, name: str | None = None) -> Location:
        """Resolve a named or default remote to a location.

        Raises:
            QuiverConfigError: If no matching remote is configured.
        """
        payload = self._read()
        remote_name = name or payload["default"]
        if remote_name is None:
            raise QuiverConfigError(
                "No remote is configured. Add one with 'remote add NAME URL'."
            )
        url = payload["remotes"].get(remote_name)
        if url is None:
            raise QuiverConfigError(f"Remote '{remote_name}' is not defined. Run 'remote list'.")
        return self._parse(url)

    def set_external_cache(self, url: str) -> Location:
        """Register the external cache for the URL's scheme.

        Args:
            url: External cache URL or local path.

        Returns:
            Parsed external cache location.

        Raises:
            QuiverConfigError: If the cache overlaps a push/pull remote.
        """
        location = self._parse(url)
        payload = self._read()
        for remote_name, remote_url in payload["remotes"].items():
            self._ensure_disjoint(location, self._parse(remote_url), f"remote '{remote_name}'")
        scheme = location_scheme_key(url)
        payload["external_caches"][scheme] = location.url
        self._write(payload)
        _LOGGER.info("external_cache_set", scheme=scheme, url=location.url)
        return location

    def external_cache_for(self, scheme: str) -> Location | None:
        """Return the external cache registered for a scheme, if any."""
        url = self._read()["external_caches"].get(scheme)
        return self._parse(url) if url else None

    def external_caches(self) -> dict[str, str]:
        """Return external cache URLs keyed by scheme."""
        return dict(self._read()["external_caches"])

    def _parse(self, url: str) -> Location:
        return parse_location(url, base_dir=self._workspace_root)

    def _ensure_disjoint(self, candidate: Location, existing: Location, label: str) -> None:
        if candidate.contains(existing) or existing.contains(candidate):
            raise QuiverConfigError(
                f"Location {candidate.url} overlaps {label} at {existing.url}. "
                "External caches and push/pull remotes must use separate locations."
            )

    def _read(self) -> dict:
        payload = read_json_file(
            self._registry_path,
            default_value={"default": None, "remotes": {}, "external_caches": {}},
            error_type=QuiverConfigError,
        )
        if not isinstance(payload, dict):
            raise QuiverConfigError(
                f"Invalid remote registry at {self._registry_path}: expected object."
            )
        payload.setdefault("default", None)
        payload.setdefault("remotes", {})
        payload.setdefault("external_caches", {})
        if not isinstance(payload["remotes"], dict) or not isinstance(
            payload["external_caches"], dict
        ):
            raise QuiverConfigError(
                f"Invalid remote registry at {self._registry_path}: "
                "expected 'remotes' and 'external_caches' objects."
            )
        return payload

    def _write(self, payload: dict) -> None:
        write_json_file(self._registry_path, payload, error_type=QuiverConfigError)


def _validate_name(name: str) -> None:
    if not _NAME_PATTERN.match(name):
        raise QuiverConfigError(
            f"Invalid remote name '{name}'. Use letters, digits, '.', '_' or '-'."
        )
