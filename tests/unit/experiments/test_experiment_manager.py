"""Unit tests for experiment runs, apply, promotion and gc."""

from __future__ import annotations

import shlex
import sys
from dataclasses import replace
from pathlib import Path

import pytest

from cache.object_cache import ContentCache
from core.config import QuiverConfig
from core.errors import QuiverExperimentError, QuiverPipelineError
from core.yaml_io import dump_yaml_file, load_yaml_file
from experiments.manager import ExperimentManager

SRC_DIR = Path(__file__).resolve().parents[3] / "src"
TRAIN_SCRIPT = """
import json
import pathlib

import yaml

from quiver import make_checkpoint

model = pathlib.Path("model.txt")
step = int(model.read_text()) if model.exists() else 0
lr = float(yaml.safe_load(pathlib.Path("params.yaml").read_text())["lr"])
for _ in range(2):
    step += 1
    model.write_text(str(step))
    pathlib.Path("metrics.json").write_text(json.dumps({"step": step, "loss": lr / step}))
    make_checkpoint()
"""


@pytest.fixture
def manager(monkeypatch: pytest.MonkeyPatch, tmp_path) -> ExperimentManager:
    """Workspace with one checkpointing training stage."""
    monkeypatch.setenv("PYTHONPATH", str(SRC_DIR))
    (tmp_path / "train.py").write_text(TRAIN_SCRIPT, encoding="utf-8")
    (tmp_path / "params.yaml").write_text("lr: 0.1\n", encoding="utf-8")
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
                }
            }
        },
    )
    config = replace(
        QuiverConfig.from_env(),
        workspace_root=tmp_path,
        cache_dir=None,
        checkpoint_poll_seconds=0.05,
    )
    return ExperimentManager(config, ContentCache(config.local_cache_dir))


def test_run_commits_one_checkpoint_per_signal(manager: ExperimentManager) -> None:
    """Each make_checkpoint call should add one checkpoint to the experiment."""
    summary = manager.run(name="baseline")
    chain = manager.show("baseline")
    run = manager.runs.load_run(manager.runs.list_runs()[-1])

    assert (
        summary.checkpoint_count == 2
        and [item.step for item in chain] == [2, 1]
        and chain[0].metrics == {"step": 2.0, "loss": 0.05}
        and chain[0].params == {"params.yaml:lr": 0.1}
        and (run.state, run.checkpoint_count, run.head_checkpoint)
        == ("completed", 2, summary.head)
    )


def test_checkpoint_outputs_are_cached(manager: ExperimentManager, tmp_path) -> None:
    """Every checkpoint output should be restorable from the cache."""
    manager.run(name="baseline")
    cache = ContentCache(tmp_path / ".quiver" / "cache")

    assert all(cache.contains(checksum) for checksum in manager.used_checksums()) and (
        len(manager.used_checksums()) == 2
    )


def test_resume_continues_existing_chain(manager: ExperimentManager, tmp_path) -> None:
    """Resuming should restore the head and append to the same experiment."""
    manager.run(name="baseline")
    (tmp_path / "model.txt").write_text("0", encoding="utf-8")

    summary = manager.run(resume="baseline")

    assert summary.checkpoint_count == 4 and (
        (tmp_path / "model.txt").read_text(encoding="utf-8") == "4"
    )


def test_reset_starts_new_chain_from_scratch(manager: ExperimentManager, tmp_path) -> None:
    """Reset should drop checkpoint outputs and begin a root checkpoint."""
    manager.run(name="baseline")

    summary = manager.run(name="fresh", reset=True, params={"lr": 0.2})
    chain = manager.show("fresh")

    assert summary.checkpoint_count == 2 and chain[-1].parent_id is None and (
        (tmp_path / "model.txt").read_text(encoding="utf-8") == "2"
    )


def test_param_overrides_are_written_and_recorded(manager: ExperimentManager, tmp_path) -> None:
    """Overrides should update params.yaml and the checkpoint params."""
    manager.run(name="tuned", params={"params.yaml:lr": 0.5})

    assert load_yaml_file(tmp_path / "params.yaml") == {"lr": 0.5} and manager.show("tuned")[
        0
    ].params == {"params.yaml:lr": 0.5}


def test_apply_restores_outputs_and_branches_next_run(
    manager: ExperimentManager,
    tmp_path,
) -> None:
    """The next run should grow from the applied checkpoint."""
    manager.run(name="baseline")
    first = manager.show("baseline")[-1]

    applied = manager.apply(first.short_id)
    restored = (tmp_path / "model.txt").read_text(encoding="utf-8")
    manager.run(name="branched", params={"lr": 0.3})
    chain = manager.show("branched")

    assert (
        applied.checkpoint_id == first.checkpoint_id
        and restored == "1"
        and [item.step for item in chain] == [3, 2, 1]
        and chain[-1].checkpoint_id == first.checkpoint_id
        and manager.applied_checkpoint() is None
    )


def test_diff_reports_metric_and_param_changes(manager: ExperimentManager) -> None:
    """Diff should compare metrics and params of two experiments."""
    manager.run(name="slow")
    manager.run(name="fast", reset=True, params={"lr": 0.4})

    metric_rows, param_rows = manager.diff("slow", "fast")

    assert [(row.key, row.change) for row in param_rows] == [
        ("params.yaml:lr", pytest.approx(0.3))
    ] and {row.key for row in metric_rows} == {"loss", "step"}


def test_gc_removes_unpromoted_experiments(manager: ExperimentManager) -> None:
    """Only promoted or kept experiments should survive gc."""
    manager.run(name="keeper")
    manager.run(name="scratch", reset=True, params={"lr": 0.7})
    manager.run(name="pinned", reset=True, params={"lr": 0.9})
    manager.branch("keeper", "best")

    removed = manager.gc(keep=["pinned"])
    listing = {item.name: item.promoted for item in manager.list_experiments()}

    assert removed == ["scratch"] and listing == {"keeper": True, "pinned": False} and (
        len(manager.checkpoints.all_ids()) == 4
    )


def test_run_rejects_existing_name_and_conflicting_flags(manager: ExperimentManager) -> None:
    """Names are unique and reset cannot be combined with resume."""
    manager.run(name="baseline")

    with pytest.raises(QuiverExperimentError):
        manager.run(name="baseline")
    with pytest.raises(QuiverExperimentError):
        manager.run(reset=True, resume="baseline")

    assert len(manager.list_experiments()) == 1


def test_rejected_run_leaves_params_untouched(manager: ExperimentManager, tmp_path) -> None:
    """Overrides should only be written once the run is accepted."""
    manager.run(name="baseline")

    with pytest.raises(QuiverExperimentError):
        manager.run(name="baseline", params={"lr": 0.9})
    with pytest.raises(QuiverExperimentError):
        manager.run(resume="missing", params={"lr": 0.7})

    assert (tmp_path / "params.yaml").read_text(encoding="utf-8") == "lr: 0.1\n"


def test_branch_rejects_existing_branch(manager: ExperimentManager) -> None:
    """Branch names cannot be reused."""
    manager.run(name="baseline")
    manager.branch("baseline", "best")

    with pytest.raises(QuiverExperimentError):
        manager.branch("baseline", "best")

    assert True


def test_failed_stage_marks_run_failed(manager: ExperimentManager, tmp_path) -> None:
    """Stage failures should leave a failed run record."""
    (tmp_path / "train.py").write_text("raise SystemExit(2)\n", encoding="utf-8")

    with pytest.raises(QuiverPipelineError):
        manager.run(name="broken")

    record = manager.runs.load_run(manager.runs.list_runs()[-1])
    assert record.state == "failed" and record.error_message is not None
