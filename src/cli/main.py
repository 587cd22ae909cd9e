"""Quiver CLI entry points.
This module exposes tracking, remote, pipeline, and experiment commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from cli.experiment_command import add_experiment_command, run_experiment_command
from cli.metrics_command import (
    add_metrics_command,
    add_plots_command,
    run_metrics_command,
    run_plots_command,
)
from core.config import QuiverConfig
from core.errors import QuiverError
from sdk.client import QuiverClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="quiver", description="Quiver data and experiment CLI")
    parser.add_argument("--workspace", help="Override QUIVER_WORKSPACE for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_add_command(subparsers)
    _add_status_command(subparsers)
    _add_checkout_command(subparsers)
    _add_transfer_commands(subparsers)
    _add_remote_command(subparsers)
    _add_cache_command(subparsers)
    _add_repro_command(subparsers)
    add_experiment_command(subparsers)
    add_metrics_command(subparsers)
    add_plots_command(subparsers)
    _add_gc_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Quiver CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(args.workspace)
        return _dispatch(client, args)
    except QuiverError as error:
        print(f"error: {error}", file=sys.stderr)
        return 1


def _dispatch(client: QuiverClient, args: argparse.Namespace) -> int:
    handlers = {
        "add": _run_add_command,
        "status": _run_status_command,
        "checkout": _run_checkout_command,
        "push": _run_push_command,
        "pull": _run_pull_command,
        "remote": _run_remote_command,
        "cache": _run_cache_command,
        "repro": _run_repro_command,
        "exp": run_experiment_command,
        "metrics": run_metrics_command,
        "plots": run_plots_command,
        "gc": _run_gc_command,
    }
    return handlers[args.command](client, args)


def _build_client(workspace: str | None) -> QuiverClient:
    """Build SDK client with optional workspace override.

    Args:
        workspace: Optional override path.

    Returns:
        Configured SDK client.
    """
    config = QuiverConfig.from_env()
    if workspace:
        config = replace(config, workspace_root=Path(workspace).expanduser().resolve())
    return QuiverClient(config)


def _run_add_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle add command."""
    for target in args.targets:
        artifact = client.add(target, external=args.external)
        print(f"{artifact.path}\t{artifact.checksum}")
    return 0


def _run_status_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle status command."""
    for status in client.status():
        print(f"{status.path}\t{status.state}")
    return 0


def _run_checkout_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle checkout command."""
    for artifact in client.checkout(args.targets or None):
        print(f"{artifact.path}\t{artifact.checksum}")
    return 0


def _run_push_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle push command."""
    summary = client.push(args.remote)
    print(f"transferred={len(summary.transferred)}")
    print(f"skipped={len(summary.skipped)}")
    return 0


def _run_pull_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle pull command."""
    summary = client.pull(args.remote)
    print(f"transferred={len(summary.transferred)}")
    print(f"skipped={len(summary.skipped)}")
    return 0


def _run_remote_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle remote add/remove/list actions."""
    if args.remote_command == "add":
        remote = client.add_remote(args.name, args.url, default=args.default)
        print(f"{remote.name}\t{remote.url}")
    elif args.remote_command == "remove":
        client.remove_remote(args.name)
        print(f"removed\t{args.name}")
    else:
        for remote in client.list_remotes():
            marker = "default" if remote.is_default else "-"
            print(f"{remote.name}\t{remote.url}\t{marker}")
    return 0


def _run_cache_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle cache external action."""
    if args.url:
        location = client.set_external_cache(args.url)
        print(f"{location.scheme}\t{location.url}")
        return 0
    for scheme, url in sorted(client.external_caches().items()):
        print(f"{scheme}\t{url}")
    return 0


def _run_repro_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle repro command."""
    for result in client.reproduce(args.stages or None, force=args.force):
        action = "ran" if result.executed else "skipped"
        print(f"{result.stage_name}\t{result.state}\t{action}")
    return 0


def _run_gc_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Handle cache gc command."""
    removed = client.gc_cache(include_experiments=not args.skip_experiments)
    print(f"removed={len(removed)}")
    return 0


def _add_add_command(subparsers: Any) -> None:
    """Register add subcommand."""
    parser = subparsers.add_parser("add", help="Track workspace or external artifacts")
    parser.add_argument("targets", nargs="+", help="Workspace paths, external paths, or URLs")
    parser.add_argument(
        "--external",
        action="store_true",
        help="Track data in place outside the workspace through its external cache",
    )


def _add_status_command(subparsers: Any) -> None:
    """Register status subcommand."""
    subparsers.add_parser("status", help="Show state of tracked artifacts")


def _add_checkout_command(subparsers: Any) -> None:
    """Register checkout subcommand."""
    parser = subparsers.add_parser("checkout", help="Restore tracked artifacts from cache")
    parser.add_argument("targets", nargs="*", help="Optional artifacts to restore")


def _add_transfer_commands(subparsers: Any) -> None:
    """Register push and pull subcommands."""
    for name, help_text in (
        ("push", "Upload cached objects to a remote"),
        ("pull", "Download cached objects from a remote"),
    ):
        parser = subparsers.add_parser(name, help=help_text)
        parser.add_argument("-r", "--remote", help="Remote name; the default remote when omitted")


def _add_remote_command(subparsers: Any) -> None:
    """Register remote subcommand."""
    parser = subparsers.add_parser("remote", help="Manage push/pull remotes")
    actions = parser.add_subparsers(dest="remote_command", required=True)
    add_parser = actions.add_parser("add", help="Add a remote")
    add_parser.add_argument("name", help="Remote name")
    add_parser.add_argument("url", help="s3://, ssh://, hdfs://, webhdfs:// URL or local path")
    add_parser.add_argument("-d", "--default", action="store_true", help="Make default remote")
    remove_parser = actions.add_parser("remove", help="Remove a remote")
    remove_parser.add_argument("name", help="Remote name")
    actions.add_parser("list", help="List remotes")


def _add_cache_command(subparsers: Any) -> None:
    """Register cache subcommand."""
    parser = subparsers.add_parser("cache", help="Configure caches")
    actions = parser.add_subparsers(dest="cache_command", required=True)
    external_parser = actions.add_parser(
        "external",
        help="Set or list external caches keyed by storage scheme",
    )
    external_parser.add_argument("url", nargs="?", help="External cache URL or local path")


def _add_repro_command(subparsers: Any) -> None:
    """Register repro subcommand."""
    parser = subparsers.add_parser("repro", help="Run changed pipeline stages")
    parser.add_argument("stages", nargs="*", help="Optional target stages")
    parser.add_argument("-f", "--force", action="store_true", help="Run stages even if unchanged")


def _add_gc_command(subparsers: Any) -> None:
    """Register gc subcommand."""
    parser = subparsers.add_parser("gc", help="Remove unused objects from the local cache")
    parser.add_argument(
        "--skip-experiments",
        action="store_true",
        help="Drop checkpoint outputs of experiments from the used set",
    )
