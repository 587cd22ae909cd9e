"""Unit tests for experiment and branch refs."""

from __future__ import annotations

import pytest

from core.errors import QuiverExperimentError
from experiments.refs import RefStore


def test_refs_are_namespaced_by_kind(tmp_path) -> None:
    """Experiment and branch refs with one name should not collide."""
    refs = RefStore(tmp_path)
    refs.write("exps", "baseline", "a" * 64)
    refs.write("branches", "baseline", "b" * 64)

    assert refs.read("exps", "baseline") == "a" * 64 and refs.list("branches") == {
        "baseline": "b" * 64
    }


def test_delete_reports_whether_ref_existed(tmp_path) -> None:
    """Deleting a ref twice should report False the second time."""
    refs = RefStore(tmp_path)
    refs.write("exps", "run-1", "a" * 64)

    assert refs.delete("exps", "run-1") and not refs.delete("exps", "run-1")


def test_invalid_ref_names_are_rejected(tmp_path) -> None:
    """Ref names cannot escape the refs directory."""
    with pytest.raises(QuiverExperimentError):
        RefStore(tmp_path).write("exps", "../escape", "a" * 64)

    assert not (tmp_path / "escape").exists()
