"""Metric file reading and snapshot diffs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping

from core.errors import QuiverExperimentError
from core.types import MetricDiff
from core.yaml_io import load_yaml_file


def read_metrics(metrics_path: Path) -> dict[str, float]:
    """Read a JSON or YAML metrics file into flattened numeric values.

    Nested mappings are joined with ``.``; non-numeric values and booleans
    are dropped.

    Raises:
        QuiverExperimentError: If the file cannot be parsed.
    """
    if metrics_path.suffix.lower() in {".yaml", ".yml"}:
        payload = load_yaml_file(metrics_path, error_type=QuiverExperimentError, default_value={})
    else:
        try:
            payload = json.loads(metrics_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            raise QuiverExperimentError(
                f"Failed to read metrics file {metrics_path}: {error}."
            ) from error
    if not isinstance(payload, Mapping):
        raise QuiverExperimentError(
            f"Invalid metrics file {metrics_path}: expected a mapping at top level."
        )
    return flatten_metrics(payload)


def flatten_metrics(payload: Mapping[str, object], prefix: str = "") -> dict[str, float]:
    """Flatten nested numeric metrics into dotted keys."""
    flattened: dict[str, float] = {}
    for key, value in payload.items():
        full_key = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flattened.update(flatten_metrics(value, prefix=f"{full_key}."))
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            flattened[full_key] = float(value)
    return flattened


def diff_metrics(old: Mapping[str, object], new: Mapping[str, object]) -> list[MetricDiff]:
    """Compare two flat mappings key by key.

    Returns:
        One row per key present on either side, sorted by key. ``change`` is
        ``new - old`` when both sides are numeric.
    """
    rows = []
    for key in sorted(set(old) | set(new)):
        old_value = old.get(key)
        new_value = new.get(key)
        rows.append(
            MetricDiff(key=key, old=old_value, new=new_value, change=_change(old_value, new_value))
        )
    return rows


def _change(old_value: object, new_value: object) -> float | None:
    if _is_number(old_value) and _is_number(new_value):
        return float(new_value) - float(old_value)  # type: ignore[arg-type]
    return None


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
