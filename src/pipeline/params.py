"""Stage parameter resolution and overrides.

Parameters are addressed by dotted keys inside YAML params files, e.g.
``model.layers`` reads ``{"model": {"layers": ...}}``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from core.errors import QuiverPipelineError
from core.yaml_io import dump_yaml_file, load_yaml_file, parse_yaml_scalar


def read_param_values(
    workspace_root: Path,
    params: Mapping[str, tuple[str, ...]],
) -> dict[str, dict[str, object]]:
    """Resolve declared parameter keys to their current values.

    Args:
        workspace_root: Workspace directory.
        params: Parameter keys grouped by params file.

    Returns:
        Values grouped by params file and keyed by dotted key.

    Raises:
        QuiverPipelineError: If a params file or key is missing.
    """
    resolved: dict[str, dict[str, object]] = {}
    for file_name, keys in params.items():
        payload = _load_params_payload(workspace_root / file_name)
        resolved[file_name] = {key: resolve_dotted_key(payload, key, file_name) for key in keys}
    return resolved


def flatten_param_values(values: Mapping[str, Mapping[str, object]]) -> dict[str, object]:
    """Flatten grouped param values into ``file:key`` entries."""
    return {
        f"{file_name}:{key}": value
        for file_name, file_values in sorted(values.items())
        for key, value in sorted(file_values.items())
    }


def resolve_dotted_key(payload: Mapping[str, Any], key: str, file_name: str) -> object:
    """Return the value stored at a dotted key.

    Raises:
        QuiverPipelineError: If any key segment is missing.
    """
    current: object = payload
    for segment in key.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            raise QuiverPipelineError(
                f"Parameter '{key}' not found in {file_name}. "
                "Add it to the params file or remove it from the stage."
            )
        current = current[segment]
    return current


def apply_param_overrides(params_path: Path, overrides: Mapping[str, object]) -> None:
    """Write dotted-key overrides into a params file, creating keys as needed.

    Args:
        params_path: YAML params file; created when missing.
        overrides: Dotted keys mapped to new values.

    Raises:
        QuiverPipelineError: If a key segment collides with a scalar value.
    """
    if not overrides:
        return
    payload = _load_params_payload(params_path, allow_missing=True)
    for key, value in overrides.items():
        segments = key.split(".")
        current: dict[str, Any] = payload
        for segment in segments[:-1]:
            child = current.setdefault(segment, {})
            if not isinstance(child, dict):
                raise QuiverPipelineError(
                    f"Cannot override '{key}': '{segment}' holds a scalar value in {params_path}."
                )
            current = child
        current[segments[-1]] = value
    dump_yaml_file(params_path, payload, error_type=QuiverPipelineError)


def parse_param_override(raw_override: str) -> tuple[str, object]:
    """Parse a ``key=value`` override, typing the value as YAML.

    Raises:
        QuiverPipelineError: If the override has no ``=`` or an empty key.
    """
    key, separator, raw_value = raw_override.partition("=")
    if not separator or not key.strip():
        raise QuiverPipelineError(
            f"Invalid parameter override '{raw_override}'. Use KEY=VALUE, e.g. lr=0.01."
        )
    return key.strip(), parse_yaml_scalar(raw_value, error_type=QuiverPipelineError)


def _load_params_payload(params_path: Path, allow_missing: bool = False) -> dict[str, Any]:
    if not params_path.exists():
        if allow_missing:
            return {}
        raise QuiverPipelineError(
            f"Params file {params_path} does not exist. Create it or remove the stage params."
        )
    payload = load_yaml_file(params_path, error_type=QuiverPipelineError, default_value={})
    if not isinstance(payload, dict):
        raise QuiverPipelineError(
            f"Invalid params file at {params_path}: expected a mapping at top level."
        )
    return payload
