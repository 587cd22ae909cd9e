"""Unit tests for stage file parsing."""

from __future__ import annotations

import pytest

from core.errors import QuiverPipelineError
from pipeline.stage_file import load_pipeline


def _write_stages(tmp_path, text: str) -> None:
    (tmp_path / "quiver.yaml").write_text(text, encoding="utf-8")


def test_load_pipeline_parses_outputs_metrics_and_plots(tmp_path) -> None:
    """Stage declarations should map onto typed outputs."""
    _write_stages(
        tmp_path,
        """
stages:
  train:
    cmd: python train.py
    deps: [data/train.csv, train.py]
    params:
      - lr
      - config/model.yaml: [model.layers]
    outs:
      - model.pt:
          checkpoint: true
      - logs:
          cache: false
    metrics:
      - metrics.json
    plots:
      - loss.csv:
          x: step
          y: loss
""",
    )

    stage = load_pipeline(tmp_path)["train"]

    assert (
        stage.deps == ("data/train.csv", "train.py")
        and dict(stage.params) == {"params.yaml": ("lr",), "config/model.yaml": ("model.layers",)}
        and [output.path for output in stage.checkpoint_outs] == ["model.pt"]
        and stage.metric_paths == ("metrics.json",)
        and [(output.path, output.cache) for output in stage.outs if output.kind == "out"]
        == [("model.pt", True), ("logs", False)]
        and (stage.plots[0].x, stage.plots[0].y) == ("step", "loss")
    )


def test_load_pipeline_rejects_unknown_stage_fields(tmp_path) -> None:
    """Unknown stage keys should fail validation."""
    _write_stages(tmp_path, "stages:\n  train:\n    cmd: echo\n    command: echo\n")

    with pytest.raises(QuiverPipelineError):
        load_pipeline(tmp_path)

    assert True


def test_checkpoint_outputs_must_be_cached(tmp_path) -> None:
    """Checkpoint outputs cannot opt out of the cache."""
    _write_stages(
        tmp_path,
        "stages:\n  train:\n    cmd: echo\n    outs:\n      - model.pt: {checkpoint: true, cache: false}\n",
    )

    with pytest.raises(QuiverPipelineError):
        load_pipeline(tmp_path)

    assert True


def test_checkpoint_outputs_reject_persist_flag(tmp_path) -> None:
    """Checkpoint outputs always persist, so the flag is redundant."""
    _write_stages(
        tmp_path,
        "stages:\n  train:\n    cmd: echo\n    outs:\n      - model.pt: {checkpoint: true, persist: true}\n",
    )

    with pytest.raises(QuiverPipelineError):
        load_pipeline(tmp_path)

    assert True


def test_duplicate_outputs_across_stages_are_rejected(tmp_path) -> None:
    """Each output path should have one producing stage."""
    _write_stages(
        tmp_path,
        "stages:\n  a:\n    cmd: echo\n    outs: [out.txt]\n  b:\n    cmd: echo\n    outs: [out.txt]\n",
    )

    with pytest.raises(QuiverPipelineError):
        load_pipeline(tmp_path)

    assert True


def test_paths_outside_workspace_are_rejected(tmp_path) -> None:
    """Stage paths must stay inside the workspace."""
    _write_stages(tmp_path, "stages:\n  a:\n    cmd: echo\n    deps: [../secret.txt]\n")

    with pytest.raises(QuiverPipelineError):
        load_pipeline(tmp_path)

    assert True


def test_missing_stage_file_raises(tmp_path) -> None:
    """Workspaces without a stage file should fail clearly."""
    with pytest.raises(QuiverPipelineError):
        load_pipeline(tmp_path)

    assert not (tmp_path / "quiver.yaml").exists()


def test_plot_outputs_are_uncached_unless_requested(tmp_path) -> None:
    """Plot files should be tracked like uncached outputs by default."""
    _write_stages(
        tmp_path,
        """
stages:
  evaluate:
    cmd: python evaluate.py
    plots:
      - plots/loss.json:
          x: step
          y: loss
      - plots/roc.csv:
          cache: true
""",
    )

    stage = load_pipeline(tmp_path)["evaluate"]

    assert [(output.path, output.cache) for output in stage.outs if output.kind == "plot"] == [
        ("plots/loss.json", False),
        ("plots/roc.csv", True),
    ]
