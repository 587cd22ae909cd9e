"""JSON I/O helpers for internal state files."""

from __future__ import annotations

import json
from pathlib import Path

from core.errors import QuiverError


def read_json_file(
    payload_path: Path,
    default_value: object | None = None,
    error_type: type[QuiverError] = QuiverError,
) -> object:
    """Read JSON payload from disk with optional default when missing."""
    if default_value is not None and not payload_path.exists():
        return default_value
    try:
        return json.loads(payload_path.read_text(encoding="utf-8"))
    except FileNotFoundError as error:
        raise error_type(
            f"Missing required state file at {payload_path}. The workspace may be incomplete."
        ) from error
    except json.JSONDecodeError as error:
        raise error_type(f"Failed to parse JSON at {payload_path}: {error.msg}.") from error
    except OSError as error:
        raise error_type(f"Failed to read state file {payload_path}: {error}.") from error


def write_json_file(
    payload_path: Path,
    payload: object,
    error_type: type[QuiverError] = QuiverError,
) -> None:
    """Write one JSON payload to disk with traceable errors."""
    try:
        payload_path.parent.mkdir(parents=True, exist_ok=True)
        payload_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    except OSError as error:
        raise error_type(f"Failed to write state file {payload_path}: {error}.") from error
