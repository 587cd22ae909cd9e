"""Unit tests for plot data extraction."""

from __future__ import annotations

import json

import pytest

from core.errors import QuiverPipelineError
from core.types import PlotSpec
from pipeline.plots import collect_plot_points


def test_csv_plot_uses_declared_fields(tmp_path) -> None:
    """CSV plots should coerce numeric columns."""
    (tmp_path / "loss.csv").write_text("step,loss\n1,0.5\n2,0.25\n", encoding="utf-8")

    points = collect_plot_points(tmp_path, PlotSpec(path="loss.csv", x="step", y="loss"))

    assert points == [(1, 0.5), (2, 0.25)]


def test_json_plot_defaults_to_row_index_and_last_field(tmp_path) -> None:
    """Without x and y, the index and last value field should be used."""
    payload = {"train": [{"epoch": 1, "acc": 0.7}, {"epoch": 2, "acc": 0.8}]}
    (tmp_path / "acc.json").write_text(json.dumps(payload), encoding="utf-8")

    points = collect_plot_points(tmp_path, PlotSpec(path="acc.json"))

    assert points == [(0, 0.7), (1, 0.8)]


def test_tsv_plot_defaults_y_to_last_non_x_field(tmp_path) -> None:
    """Declared x should be excluded when picking the default y."""
    (tmp_path / "roc.tsv").write_text("fpr\ttpr\tx\n0.0\t0.1\t5\n", encoding="utf-8")

    points = collect_plot_points(tmp_path, PlotSpec(path="roc.tsv", x="x"))

    assert points == [(5, 0.1)]


def test_missing_plot_field_raises(tmp_path) -> None:
    """Unknown y fields should list available fields."""
    (tmp_path / "loss.csv").write_text("step,loss\n1,0.5\n", encoding="utf-8")

    with pytest.raises(QuiverPipelineError):
        collect_plot_points(tmp_path, PlotSpec(path="loss.csv", y="accuracy"))

    assert True


def test_missing_plot_file_raises(tmp_path) -> None:
    """Plots of stages that never ran should fail."""
    with pytest.raises(QuiverPipelineError):
        collect_plot_points(tmp_path, PlotSpec(path="loss.csv"))

    assert True
