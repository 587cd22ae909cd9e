"""Command-line storage backends for HDFS and SSH.

These backends drive the standard ``hdfs dfs``, ``ssh`` and ``scp``
clients through subprocess calls so no protocol code lives in Quiver.
"""

from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import Callable, Iterator, Sequence

from core.errors import QuiverDependencyError, QuiverRemoteError
from core.locations import Location
from remote.base import StorageBackend

CommandRunner = Callable[[Sequence[str], bool], "subprocess.CompletedProcess[str]"]


def run_command(args: Sequence[str], check: bool = True) -> "subprocess.CompletedProcess[str]":
    """Run one storage client command.

    Args:
        args: Command and arguments.
        check: Raise on non-zero exit status when true.

    Returns:
        Completed process with captured text output.

    Raises:
        QuiverDependencyError: If the executable is not installed.
        QuiverRemoteError: If the command fails and ``check`` is set.
    """
    try:
        completed = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as error:
        raise QuiverDependencyError(
            f"Storage command '{args[0]}' is not installed. "
            f"Install it and make sure it is on PATH."
        ) from error
    if check and completed.returncode != 0:
        raise QuiverRemoteError(
            f"Storage command failed ({completed.returncode}): {shlex.join(args)}: "
            f"{completed.stderr.strip()}"
        )
    return completed


class HdfsBackend(StorageBackend):
    """Backend for ``hdfs://`` locations using the ``hdfs dfs`` client."""

    scheme = "hdfs"
    checksum_type = "hdfs"

    def __init__(self, runner: CommandRunner = run_command) -> None:
        self._runner = runner

    def exists(self, location: Location) -> bool:
        return self._dfs(["-test", "-e", location.url], check=False).returncode == 0

    def is_dir(self, location: Location) -> bool:
        return self._dfs(["-test", "-d", location.url], check=False).returncode == 0

    def file_checksum(self, location: Location) -> str:
        output = self._dfs(["-checksum", location.url]).stdout.strip()
        if not output:
            raise QuiverRemoteError(f"hdfs returned no checksum for {location.url}.")
        return output.split()[-1]

    def file_size(self, location: Location) -> int:
        return int(self._dfs(["-stat", "%b", location.url]).stdout.strip())

    def walk_files(self, location: Location) -> Iterator[Location]:
        output = self._dfs(["-ls", "-R", location.url]).stdout
        paths = []
        for line in output.splitlines():
            columns = line.split()
            if len(columns) < 8 or columns[0].startswith("d"):
                continue
            paths.append(columns[-1])
        for raw_path in sorted(paths):
            yield _hdfs_child(location, raw_path)

    def upload(self, local_path: Path, location: Location) -> None:
        self._dfs(["-mkdir", "-p", _parent_url(location)])
        self._dfs(["-put", "-f", str(local_path), location.url])

    def download(self, location: Location, local_path: Path) -> None:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        if local_path.exists():
            local_path.unlink()
        self._dfs(["-get", location.url, str(local_path)])

    def copy(self, source: Location, destination: Location) -> None:
        self._dfs(["-mkdir", "-p", _parent_url(destination)])
        self._dfs(["-cp", "-f", source.url, destination.url])

    def remove(self, location: Location) -> None:
        self._dfs(["-rm", "-r", "-f", location.url])

    def _dfs(self, args: list[str], check: bool = True) -> "subprocess.CompletedProcess[str]":
        return self._runner(["hdfs", "dfs", *args], check)


class SshBackend(StorageBackend):
    """Backend for ``ssh://[user@]host[:port]/path`` using ssh and scp."""

    scheme = "ssh"
    checksum_type = "sha256"

    def __init__(self, runner: CommandRunner = run_command) -> None:
        self._runner = runner

    def exists(self, location: Location) -> bool:
        return self._ssh(location, f"test -e {_quote(location)}", check=False).returncode == 0

    def is_dir(self, location: Location) -> bool:
        return self._ssh(location, f"test -d {_quote(location)}", check=False).returncode == 0

    def file_checksum(self, location: Location) -> str:
        output = self._ssh(location, f"sha256sum {_quote(location)}").stdout.strip()
        if not output:
            raise QuiverRemoteError(f"sha256sum returned no output for {location.url}.")
        return output.split()[0]

    def file_size(self, location: Location) -> int:
        return int(self._ssh(location, f"stat -c %s {_quote(location)}").stdout.strip())

    def walk_files(self, location: Location) -> Iterator[Location]:
        output = self._ssh(location, f"find {_quote(location)} -type f").stdout
        for raw_path in sorted(line.strip() for line in output.splitlines() if line.strip()):
            yield Location(location.scheme, location.netloc, raw_path)

    def upload(self, local_path: Path, location: Location) -> None:
        self._ssh(location, f"mkdir -p {shlex.quote(_parent_path(location))}")
        self._runner(
            ["scp", *self._scp_port(location), str(local_path), self._scp_target(location)],
            True,
        )

    def download(self, location: Location, local_path: Path) -> None:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        self._runner(
            ["scp", *self._scp_port(location), self._scp_target(location), str(local_path)],
            True,
        )

    def copy(self, source: Location, destination: Location) -> None:
        self._ssh(
            destination,
            f"mkdir -p {shlex.quote(_parent_path(destination))} && "
            f"cp -R {_quote(source)} {_quote(destination)}",
        )

    def remove(self, location: Location) -> None:
        self._ssh(location, f"rm -rf {_quote(location)}")

    def _ssh(
        self,
        location: Location,
        remote_command: str,
        check: bool = True,
    ) -> "subprocess.CompletedProcess[str]":
        port_args = ["-p", str(location.port)] if location.port else []
        return self._runner(["ssh", *port_args, _user_host(location), remote_command], check)

    def _scp_port(self, location: Location) -> list[str]:
        return ["-P", str(location.port)] if location.port else []

    def _scp_target(self, location: Location) -> str:
        return f"{_user_host(location)}:{location.path}"


def _user_host(location: Location) -> str:
    return f"{location.user}@{location.host}" if location.user else location.host


def _quote(location: Location) -> str:
    return shlex.quote(location.path)


def _parent_path(location: Location) -> str:
    return location.path.rsplit("/", 1)[0] or "/"


def _parent_url(location: Location) -> str:
    return Location(location.scheme, location.netloc, _parent_path(location)).url


def _hdfs_child(root: Location, raw_path: str) -> Location:
    if "://" in raw_path:
        path = "/" + raw_path.split("://", 1)[1].split("/", 1)[-1]
        return Location(root.scheme, root.netloc, path)
    return Location(root.scheme, root.netloc, raw_path)
