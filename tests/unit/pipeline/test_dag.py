"""Unit tests for stage ordering."""

from __future__ import annotations

import pytest

from core.errors import QuiverPipelineError
from core.types import StageDefinition, StageOutput
from pipeline.dag import pipeline_order


def _stage(name: str, deps: tuple[str, ...] = (), outs: tuple[str, ...] = ()) -> StageDefinition:
    return StageDefinition(
        name=name,
        cmd="echo",
        deps=deps,
        outs=tuple(StageOutput(path=path) for path in outs),
    )


def test_pipeline_order_runs_producers_first() -> None:
    """Stages should run after the stages producing their inputs."""
    stages = {
        "evaluate": _stage("evaluate", deps=("model.pt",), outs=("scores.json",)),
        "train": _stage("train", deps=("data/clean",), outs=("model.pt",)),
        "prepare": _stage("prepare", outs=("data/clean",)),
    }

    ordered = pipeline_order(stages)

    assert [stage.name for stage in ordered] == ["prepare", "train", "evaluate"]


def test_pipeline_order_links_nested_paths() -> None:
    """A dependency below an output directory should create an edge."""
    stages = {
        "train": _stage("train", deps=("data/clean/part-0.csv",), outs=("model.pt",)),
        "prepare": _stage("prepare", outs=("data/clean",)),
    }

    assert [stage.name for stage in pipeline_order(stages)] == ["prepare", "train"]


def test_pipeline_order_targets_include_upstream_only() -> None:
    """Targeting a stage should select it and its upstream stages."""
    stages = {
        "prepare": _stage("prepare", outs=("clean.csv",)),
        "train": _stage("train", deps=("clean.csv",), outs=("model.pt",)),
        "report": _stage("report", deps=("model.pt",), outs=("report.md",)),
        "unrelated": _stage("unrelated", outs=("other.txt",)),
    }

    ordered = pipeline_order(stages, ["train"])

    assert [stage.name for stage in ordered] == ["prepare", "train"]


def test_pipeline_order_detects_cycles() -> None:
    """Cyclic dependencies should fail."""
    stages = {
        "a": _stage("a", deps=("b.txt",), outs=("a.txt",)),
        "b": _stage("b", deps=("a.txt",), outs=("b.txt",)),
    }

    with pytest.raises(QuiverPipelineError):
        pipeline_order(stages)

    assert True


def test_pipeline_order_rejects_unknown_target() -> None:
    """Unknown targets should list available stages."""
    with pytest.raises(QuiverPipelineError):
        pipeline_order({"a": _stage("a")}, ["missing"])

    assert True
