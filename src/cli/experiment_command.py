"""Experiment command wiring for Quiver CLI.

This module isolates ``exp`` subcommand parsers and execution logic.
"""

from __future__ import annotations

import argparse
from typing import Any

from core.types import MetricDiff
from pipeline.params import parse_param_override
from sdk.client import QuiverClient


def add_experiment_command(subparsers: Any) -> None:
    """Register exp subcommand and its actions."""
    parser = subparsers.add_parser("exp", help="Run and manage checkpointed experiments")
    actions = parser.add_subparsers(dest="exp_command", required=True)
    run_parser = actions.add_parser("run", help="Run the checkpointing stage as an experiment")
    run_parser.add_argument("stage", nargs="?", help="Optional target stage")
    run_parser.add_argument("-n", "--name", help="Name of the new experiment")
    run_parser.add_argument(
        "-S",
        "--set-param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a parameter; use file:key for non-default params files",
    )
    chain_group = run_parser.add_mutually_exclusive_group()
    chain_group.add_argument("--reset", action="store_true", help="Start a new checkpoint chain")
    chain_group.add_argument("--resume", metavar="EXP", help="Continue an existing experiment")
    show_parser = actions.add_parser("show", help="List experiments or checkpoints of one")
    show_parser.add_argument("experiment", nargs="?", help="Experiment, branch, or checkpoint")
    diff_parser = actions.add_parser("diff", help="Compare metrics and params of two refs")
    diff_parser.add_argument("first", help="Experiment, branch, or checkpoint id")
    diff_parser.add_argument("second", help="Experiment, branch, or checkpoint id")
    apply_parser = actions.add_parser("apply", help="Restore a checkpoint into the workspace")
    apply_parser.add_argument("target", help="Experiment, branch, or checkpoint id")
    branch_parser = actions.add_parser("branch", help="Promote an experiment to a branch")
    branch_parser.add_argument("experiment", help="Experiment to promote")
    branch_parser.add_argument("branch", help="New branch name")
    remove_parser = actions.add_parser("remove", help="Delete experiment refs")
    remove_parser.add_argument("experiments", nargs="+", help="Experiment names")
    gc_parser = actions.add_parser("gc", help="Remove unpromoted experiments")
    gc_parser.add_argument(
        "--keep",
        action="append",
        default=[],
        metavar="EXP",
        help="Experiment to keep even when unpromoted",
    )


def run_experiment_command(client: QuiverClient, args: argparse.Namespace) -> int:
    """Dispatch one exp action."""
    action = args.exp_command
    if action == "run":
        params = dict(parse_param_override(item) for item in args.set_param)
        summary = client.run_experiment(
            stage=args.stage,
            name=args.name,
            params=params,
            reset=args.reset,
            resume=args.resume,
        )
        print(f"{summary.name}\t{summary.head[:7]}\t{summary.checkpoint_count}")
        return 0
    if action == "show":
        return _run_show(client, args.experiment)
    if action == "diff":
        metric_rows, param_rows = client.diff_experiments(args.first, args.second)
        _print_diff_rows("metric", metric_rows)
        _print_diff_rows("param", param_rows)
        return 0
    if action == "apply":
        checkpoint = client.apply_checkpoint(args.target)
        print(f"applied\t{checkpoint.short_id}\t{checkpoint.experiment}\t{checkpoint.step}")
        return 0
    if action == "branch":
        head_id = client.branch_experiment(args.experiment, args.branch)
        print(f"{args.branch}\t{head_id[:7]}")
        return 0
    if action == "remove":
        for name in client.remove_experiments(args.experiments):
            print(f"removed\t{name}")
        return 0
    if action == "gc":
        for name in client.gc_experiments(keep=args.keep):
            print(f"removed\t{name}")
        return 0
    raise ValueError(f"Unsupported exp command: {action}")


def _run_show(client: QuiverClient, experiment: str | None) -> int:
    if experiment is None:
        for summary in client.list_experiments():
            promoted = "promoted" if summary.promoted else "-"
            print(f"{summary.name}\t{summary.head[:7]}\t{summary.checkpoint_count}\t{promoted}")
        return 0
    for checkpoint in client.show_experiment(experiment):
        metrics = ",".join(f"{key}={value:g}" for key, value in sorted(checkpoint.metrics.items()))
        print(
            f"{checkpoint.short_id}\t{checkpoint.step}\t"
            f"{checkpoint.created_at.isoformat()}\t{metrics or '-'}"
        )
    return 0


def _print_diff_rows(kind: str, rows: list[MetricDiff]) -> None:
    for row in rows:
        change = "-" if row.change is None else f"{row.change:+g}"
        print(f"{kind}\t{row.key}\t{_format_value(row.old)}\t{_format_value(row.new)}\t{change}")


def _format_value(value: object) -> str:
    return "-" if value is None else str(value)
