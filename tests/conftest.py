"""Shared pytest setup for Quiver tests."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parent.parent / "src"


def pytest_sessionstart() -> None:
    """Make the src packages importable without installation."""
    if str(SRC_DIR) not in sys.path:
        sys.path.insert(0, str(SRC_DIR))


@pytest.fixture(autouse=True)
def _isolated_quiver_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep QUIVER_* variables of the calling shell out of tests."""
    for key in list(os.environ):
        if key.startswith("QUIVER_"):
            monkeypatch.delenv(key)
