"""Storage backend contract shared by every location scheme.

Backends expose file-level primitives. Directory checksums and tree
walks are composed here so every scheme hashes directories the same way.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator

from core.hashing import directory_checksum
from core.locations import Location
from core.types import DirectoryEntry


class StorageBackend(ABC):
    """Abstract storage backend for one location scheme."""

    scheme: str = ""
    checksum_type: str = ""

    @abstractmethod
    def exists(self, location: Location) -> bool:
        """Return whether a file or directory exists at the location."""

    @abstractmethod
    def is_dir(self, location: Location) -> bool:
        """Return whether the location is a directory or key prefix."""

    @abstractmethod
    def file_checksum(self, location: Location) -> str:
        """Return the backend-native checksum of one file."""

    @abstractmethod
    def file_size(self, location: Location) -> int:
        """Return the size of one file in bytes."""

    @abstractmethod
    def walk_files(self, location: Location) -> Iterator[Location]:
        """Yield every file below a directory location."""

    @abstractmethod
    def upload(self, local_path: Path, location: Location) -> None:
        """Copy a local file to the location."""

    @abstractmethod
    def download(self, location: Location, local_path: Path) -> None:
        """Copy a file at the location to a local path."""

    @abstractmethod
    def copy(self, source: Location, destination: Location) -> None:
        """Copy one file within the backend."""

    @abstractmethod
    def remove(self, location: Location) -> None:
        """Delete a file or directory at the location."""

    def checksum(self, location: Location) -> tuple[str, tuple[DirectoryEntry, ...] | None]:
        """Checksum a file or directory.

        Args:
            location: Existing file or directory location.

        Returns:
            Pair of checksum and directory manifest (None for files).
        """
        if not self.is_dir(location):
            return self.file_checksum(location), None
        entries = tuple(
            sorted(
                (
                    DirectoryEntry(
                        relpath=file_location.relative_to(location),
                        checksum=self.file_checksum(file_location),
                        size=self.file_size(file_location),
                    )
                    for file_location in self.walk_files(location)
                ),
                key=lambda entry: entry.relpath,
            )
        )
        return directory_checksum(entries), entries
