"""YAML persistence helpers for tracker, pipeline, params, and lock files.

PyYAML is imported lazily so callers get a typed dependency error with an
installation hint instead of a bare ImportError.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, cast

from core.errors import QuiverDependencyError, QuiverError


def load_yaml_file(
    yaml_path: Path,
    error_type: type[QuiverError] = QuiverError,
    default_value: object | None = None,
) -> object:
    """Load a YAML document from disk.

    Args:
        yaml_path: File to read.
        error_type: Domain error raised for read and parse failures.
        default_value: Value returned when the file is missing; raise when None.

    Returns:
        Parsed YAML payload; empty documents yield ``default_value`` or None.

    Raises:
        QuiverDependencyError: If PyYAML is unavailable.
        QuiverError: Subclass given by ``error_type`` on read/parse failures.
    """
    yaml = _import_yaml()
    if not yaml_path.exists():
        if default_value is not None:
            return default_value
        raise error_type(f"YAML file does not exist at {yaml_path}. Provide a valid file path.")
    try:
        payload = cast(object, yaml.safe_load(yaml_path.read_text(encoding="utf-8")))
    except (OSError, UnicodeDecodeError) as error:
        raise error_type(
            f"Failed to read {yaml_path}: {error}. Check file permissions and retry."
        ) from error
    except yaml.YAMLError as error:
        raise error_type(
            f"Failed to parse YAML at {yaml_path}: {error}. Fix YAML syntax and retry."
        ) from error
    if payload is None:
        return default_value
    return payload


def dump_yaml_file(
    yaml_path: Path,
    payload: object,
    error_type: type[QuiverError] = QuiverError,
) -> None:
    """Write a YAML document preserving key insertion order."""
    yaml = _import_yaml()
    try:
        yaml_path.parent.mkdir(parents=True, exist_ok=True)
        yaml_path.write_text(
            yaml.safe_dump(payload, sort_keys=False, default_flow_style=False),
            encoding="utf-8",
        )
    except OSError as error:
        raise error_type(f"Failed to write {yaml_path}: {error}.") from error


def parse_yaml_scalar(raw_value: str, error_type: type[QuiverError] = QuiverError) -> object:
    """Parse a command-line value with YAML typing rules, e.g. ``0.1`` -> float."""
    yaml = _import_yaml()
    try:
        return cast(object, yaml.safe_load(raw_value))
    except yaml.YAMLError as error:
        raise error_type(f"Failed to parse value '{raw_value}': {error}.") from error


def _import_yaml() -> Any:
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as error:  # pragma: no cover - dependency failure
        raise QuiverDependencyError(
            "YAML support requires PyYAML. Install with 'pip install pyyaml'."
        ) from error
    return yaml
