"""Plot data extraction from declared stage plot files.

Supported layouts are JSON or YAML lists of row mappings (optionally under
a single top-level key) and CSV/TSV files with a header row.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Mapping

from core.errors import QuiverPipelineError
from core.types import PlotSpec
from core.yaml_io import load_yaml_file

_CSV_DELIMITERS = {".csv": ",", ".tsv": "\t"}


def collect_plot_points(workspace_root: Path, spec: PlotSpec) -> list[tuple[object, object]]:
    """Return ``(x, y)`` rows of one plot file.

    When ``x`` is not declared, the row index is used. When ``y`` is not
    declared, the last field of each row other than ``x`` is used.

    Args:
        workspace_root: Workspace directory.
        spec: Plot declaration.

    Returns:
        Plot points in file order.

    Raises:
        QuiverPipelineError: If the file is missing, unsupported, or lacks fields.
    """
    plot_path = workspace_root / spec.path
    if not plot_path.is_file():
        raise QuiverPipelineError(
            f"Plot file '{spec.path}' does not exist. Run the stage that produces it."
        )
    rows = _read_rows(plot_path)
    points: list[tuple[object, object]] = []
    for index, row in enumerate(rows):
        x_value = _field(row, spec.x, spec.path) if spec.x else index
        y_field = spec.y or _default_y_field(row, spec.x, spec.path)
        points.append((x_value, _field(row, y_field, spec.path)))
    return points


def _read_rows(plot_path: Path) -> list[Mapping[str, object]]:
    suffix = plot_path.suffix.lower()
    if suffix in _CSV_DELIMITERS:
        with plot_path.open("r", encoding="utf-8", newline="") as handle:
            reader = csv.DictReader(handle, delimiter=_CSV_DELIMITERS[suffix])
            return [{key: _coerce_number(value) for key, value in row.items()} for row in reader]
    if suffix == ".json":
        try:
            payload = json.loads(plot_path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as error:
            raise QuiverPipelineError(
                f"Failed to parse plot file {plot_path}: {error}."
            ) from error
    elif suffix in {".yaml", ".yml"}:
        payload = load_yaml_file(plot_path, error_type=QuiverPipelineError, default_value=[])
    else:
        raise QuiverPipelineError(
            f"Unsupported plot file '{plot_path.name}'. Use JSON, YAML, CSV, or TSV."
        )
    return _rows_from_payload(payload, plot_path)


def _rows_from_payload(payload: object, plot_path: Path) -> list[Mapping[str, object]]:
    if isinstance(payload, Mapping) and len(payload) == 1:
        payload = next(iter(payload.values()))
    if not isinstance(payload, list) or not all(isinstance(row, Mapping) for row in payload):
        raise QuiverPipelineError(
            f"Invalid plot file {plot_path}: expected a list of row mappings."
        )
    return payload


def _default_y_field(row: Mapping[str, object], x_field: str | None, plot_path: str) -> str:
    candidates = [key for key in row if key != x_field]
    if not candidates:
        raise QuiverPipelineError(f"Plot file '{plot_path}' has no value field to plot.")
    return candidates[-1]


def _field(row: Mapping[str, object], field_name: str, plot_path: str) -> object:
    if field_name not in row:
        raise QuiverPipelineError(
            f"Plot file '{plot_path}' has no field '{field_name}'. "
            f"Available fields: {', '.join(row)}."
        )
    return row[field_name]


def _coerce_number(value: str | None) -> object:
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        return value
    return int(number) if number.is_integer() and "." not in value else number
