"""Unit tests for core config parsing."""

from __future__ import annotations

import os

import pytest

from core.config import QuiverConfig
from core.errors import QuiverConfigError


def test_from_env_reads_workspace(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should resolve workspace root from environment."""
    monkeypatch.setenv("QUIVER_WORKSPACE", "./.tmp-quiver")

    config = QuiverConfig.from_env()

    assert config.workspace_root.name == ".tmp-quiver"


def test_local_cache_dir_defaults_under_state_dir(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Cache should live in the workspace state dir unless overridden."""
    monkeypatch.setenv("QUIVER_WORKSPACE", str(tmp_path))
    monkeypatch.delenv("QUIVER_CACHE_DIR", raising=False)

    config = QuiverConfig.from_env()

    assert config.local_cache_dir == tmp_path.resolve() / ".quiver" / "cache"


def test_from_env_raises_for_invalid_poll_interval(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should fail for non-numeric checkpoint poll interval."""
    monkeypatch.setenv("QUIVER_CHECKPOINT_POLL_SECONDS", "not-a-number")

    with pytest.raises(QuiverConfigError):
        QuiverConfig.from_env()

    assert os.getenv("QUIVER_CHECKPOINT_POLL_SECONDS") == "not-a-number"


def test_from_env_raises_for_non_positive_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config should reject zero checkpoint timeouts."""
    monkeypatch.setenv("QUIVER_CHECKPOINT_TIMEOUT_SECONDS", "0")

    with pytest.raises(QuiverConfigError):
        QuiverConfig.from_env()

    assert True
