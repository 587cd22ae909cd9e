"""Unit tests for exp, metrics and plots CLI commands."""

from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

from cli.main import main
from core.yaml_io import dump_yaml_file

SRC_DIR = Path(__file__).resolve().parents[3] / "src"
TRAIN_SCRIPT = """
import json
import pathlib

import yaml

from quiver import make_checkpoint

lr = float(yaml.safe_load(pathlib.Path("params.yaml").read_text())["lr"])
rows = ["step,loss"]
for step in (1, 2):
    pathlib.Path("model.txt").write_text(f"{lr}:{step}")
    pathlib.Path("metrics.json").write_text(json.dumps({"loss": lr / step}))
    rows.append(f"{step},{lr / step}")
    make_checkpoint()
pathlib.Path("loss.csv").write_text("\\n".join(rows) + "\\n")
"""


@pytest.fixture
def workspace(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Path:
    """Workspace with a checkpointing training stage."""
    monkeypatch.setenv("PYTHONPATH", str(SRC_DIR))
    monkeypatch.setenv("QUIVER_CHECKPOINT_POLL_SECONDS", "0.05")
    (tmp_path / "train.py").write_text(TRAIN_SCRIPT, encoding="utf-8")
    (tmp_path / "params.yaml").write_text("lr: 0.5\n", encoding="utf-8")
    dump_yaml_file(
        tmp_path / "quiver.yaml",
        {
            "stages": {
                "train": {
                    "cmd": f"{shlex.quote(sys.executable)} train.py",
                    "deps": ["train.py"],
                    "params": ["lr"],
                    "outs": [{"model.txt": {"checkpoint": True}}],
                    "metrics": [{"metrics.json": {"cache": False}}],
                    "plots": [{"loss.csv": {"x": "step", "y": "loss"}}],
                }
            }
        },
    )
    return tmp_path


def _cli(workspace: Path, *args: str) -> int:
    return main(["--workspace", str(workspace), *args])


def test_exp_run_prints_name_head_and_count(workspace: Path, capsys) -> None:
    """exp run should print the experiment summary."""
    exit_code = _cli(workspace, "exp", "run", "-n", "baseline")
    name, head, count = capsys.readouterr().out.strip().split("\t")

    assert exit_code == 0 and name == "baseline" and len(head) == 7 and count == "2"


def test_exp_run_applies_set_param(workspace: Path, capsys) -> None:
    """-S overrides should be written to the params file before running."""
    exit_code = _cli(workspace, "exp", "run", "-n", "tuned", "-S", "lr=0.25")
    capsys.readouterr()

    assert exit_code == 0 and (workspace / "params.yaml").read_text(encoding="utf-8") == (
        "lr: 0.25\n"
    )


def test_exp_show_lists_experiments_and_checkpoints(workspace: Path, capsys) -> None:
    """exp show should list experiments, then checkpoints of one of them."""
    _cli(workspace, "exp", "run", "-n", "baseline")
    capsys.readouterr()

    list_code = _cli(workspace, "exp", "show")
    listing = capsys.readouterr().out.strip().split("\t")
    show_code = _cli(workspace, "exp", "show", "baseline")
    rows = [line.split("\t") for line in capsys.readouterr().out.strip().splitlines()]

    assert (list_code, show_code) == (0, 0) and listing[0] == "baseline" and listing[2:] == [
        "2",
        "-",
    ] and [row[1] for row in rows] == ["2", "1"] and rows[0][3] == "loss=0.25"


def test_exp_diff_prints_metric_and_param_rows(workspace: Path, capsys) -> None:
    """exp diff should label metric and param rows."""
    _cli(workspace, "exp", "run", "-n", "slow")
    _cli(workspace, "exp", "run", "-n", "fast", "--reset", "-S", "lr=1.0")
    capsys.readouterr()

    exit_code = _cli(workspace, "exp", "diff", "slow", "fast")
    rows = [line.split("\t") for line in capsys.readouterr().out.strip().splitlines()]

    assert exit_code == 0 and rows == [
        ["metric", "loss", "0.25", "0.5", "+0.25"],
        ["param", "params.yaml:lr", "0.5", "1.0", "+0.5"],
    ]


def test_exp_apply_branch_and_gc(workspace: Path, capsys) -> None:
    """Promoted experiments should survive exp gc."""
    _cli(workspace, "exp", "run", "-n", "keeper")
    _cli(workspace, "exp", "run", "-n", "scratch", "--reset", "-S", "lr=2")
    _cli(workspace, "exp", "branch", "keeper", "best")
    _cli(workspace, "exp", "apply", "best")
    capsys.readouterr()

    gc_code = _cli(workspace, "exp", "gc")
    gc_output = capsys.readouterr().out.strip()

    assert gc_code == 0 and gc_output == "removed\tscratch" and (
        (workspace / "model.txt").read_text(encoding="utf-8") == "0.5:2"
    )


def test_exp_run_reset_and_resume_are_exclusive(workspace: Path) -> None:
    """argparse should reject --reset together with --resume."""
    with pytest.raises(SystemExit):
        _cli(workspace, "exp", "run", "--reset", "--resume", "baseline")

    assert True


def test_metrics_diff_defaults_to_workspace(workspace: Path, capsys) -> None:
    """metrics diff should compare a ref against the workspace."""
    _cli(workspace, "exp", "run", "-n", "baseline")
    (workspace / "metrics.json").write_text('{"loss": 0.125}', encoding="utf-8")
    capsys.readouterr()

    exit_code = _cli(workspace, "metrics", "diff", "baseline")
    output = capsys.readouterr().out.strip()

    assert exit_code == 0 and output == "loss\t0.25\t0.125\t-0.125"


def test_plots_show_prints_points(workspace: Path, capsys) -> None:
    """plots show should print one row per point."""
    _cli(workspace, "repro")
    capsys.readouterr()

    exit_code = _cli(workspace, "plots", "show", "train")
    rows = capsys.readouterr().out.strip().splitlines()

    assert exit_code == 0 and rows == ["loss.csv\t1\t0.5", "loss.csv\t2\t0.25"]
