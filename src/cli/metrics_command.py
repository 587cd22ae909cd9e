"""Metrics and plots command wiring for Quiver CLI."""

from __future__ import annotations

import argparse
from typing import Any

from sdk.client import WORKSPACE_REF, QuiverClient


def add_metrics_command(subparsers: Any) -> None:
    """Register metrics subcommand."""
    parser = subparsers.add_parser("metrics", help="Inspect stage metrics")
    actions = parser.add_subparsers(dest="metrics_command", required=True)
    diff_parser = actions.add_parser("diff", help="Compare metrics of two refs")
    diff_parser.add_argument("first", help="Experiment, branch, checkpoint id, or 'workspace'")
    diff_parser.add_argument(
        "second",
        nargs="?",
        default=WORKSPACE_REF,
        help="Experiment, branch, checkpoint id, or 'workspace' (default)",
    )


def add_plots_command(subparsers: Any) -> None:
    """Register plots subcommand."""
    parser = subparsers.add_parser("plots", help="Inspect stage plot data")
    actions = parser.add_subparsers(dest="plots_command", required=True)
    show_parser = actions.add_parser("show", help="Print plot points of a stage")
    show_parser.add_argument("stage", help="Stage declaring plots")


def run_metrics_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Print metric diff rows as key, old, new, change."""
    for row in client.metrics_diff(args.first, args.second):
        change = "-" if row.change is None else f"{row.change:+g}"
        old = "-" if row.old is None else f"{row.old:g}"
        new = "-" if row.new is None else f"{row.new:g}"
        print(f"{row.key}\t{old}\t{new}\t{change}")
    return 0


def run_plots_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Print plot points as path, x, y rows."""
    for plot_path, points in client.plot_points(args.stage).items():
        for x_value, y_value in points:
            print(f"{plot_path}\t{x_value}\t{y_value}")
    return 0
