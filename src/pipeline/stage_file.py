"""Typed parsing of the declarative ``quiver.yaml`` stage file.

This module loads and validates stage declarations. It provides one strict
schema so reproduction, experiments, and the CLI consume the same view of
commands, dependencies, parameters, outputs, metrics, and plots.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath
from typing import Mapping

from core.constants import DEFAULT_PARAMS_FILE_NAME, PIPELINE_FILE_NAME
from core.errors import QuiverPipelineError
from core.types import OutputKind, PlotSpec, StageDefinition, StageOutput
from core.yaml_io import load_yaml_file
from pipeline.stage_fields import (
    expect_mapping,
    expect_sequence,
    optional_bool,
    optional_sequence,
    optional_string,
    required_string,
    validate_keys,
)

_STAGE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_STAGE_KEYS = {"cmd", "desc", "deps", "params", "outs", "metrics", "plots"}
_OUTPUT_FLAG_KEYS: dict[OutputKind, set[str]] = {
    "out": {"cache", "checkpoint", "persist"},
    "metric": {"cache", "persist"},
    "plot": {"cache", "persist", "x", "y", "title"},
}


def pipeline_file_path(workspace_root: Path) -> Path:
    """Return the stage file location of a workspace."""
    return workspace_root / PIPELINE_FILE_NAME


def load_pipeline(workspace_root: Path) -> dict[str, StageDefinition]:
    """Load and validate every stage of a workspace.

    Args:
        workspace_root: Workspace directory containing ``quiver.yaml``.

    Returns:
        Stage definitions keyed by name in declaration order.

    Raises:
        QuiverPipelineError: If the file is missing or fails validation.
    """
    stage_file = pipeline_file_path(workspace_root)
    payload = load_yaml_file(stage_file, error_type=QuiverPipelineError)
    if payload is None:
        raise QuiverPipelineError(f"Stage file at {stage_file} is empty. Define 'stages'.")
    root_mapping = expect_mapping(payload, "stage file root")
    validate_keys(root_mapping, {"stages"}, "stage file root")
    raw_stages = root_mapping.get("stages")
    if raw_stages is None:
        raise QuiverPipelineError(
            f"Stage file at {stage_file} is missing 'stages'. Declare at least one stage."
        )
    stages_mapping = expect_mapping(raw_stages, "stage file 'stages'")
    if not stages_mapping:
        raise QuiverPipelineError("Stage file field 'stages' must declare at least one stage.")
    stages = {name: _parse_stage(name, value) for name, value in stages_mapping.items()}
    _validate_unique_outputs(stages)
    return stages


def _parse_stage(name: str, value: object) -> StageDefinition:
    if not _STAGE_NAME_PATTERN.match(name):
        raise QuiverPipelineError(
            f"Invalid stage name '{name}'. Use letters, digits, '.', '_' or '-'."
        )
    context = f"stage '{name}'"
    stage_mapping = expect_mapping(value, context)
    validate_keys(stage_mapping, _STAGE_KEYS, context)
    outs = (
        _parse_outputs(stage_mapping, "outs", "out", context)
        + _parse_outputs(stage_mapping, "metrics", "metric", context)
        + _parse_outputs(stage_mapping, "plots", "plot", context)
    )
    return StageDefinition(
        name=name,
        cmd=required_string(stage_mapping, "cmd", context),
        deps=tuple(
            _normalize_path(_expect_string(item, f"{context} dependency"), context)
            for item in optional_sequence(stage_mapping, "deps", context)
        ),
        params=_parse_params(stage_mapping, context),
        outs=outs,
        plots=_parse_plot_specs(stage_mapping, context),
    )


def _parse_outputs(
    stage_mapping: Mapping[str, object],
    field_name: str,
    kind: OutputKind,
    context: str,
) -> tuple[StageOutput, ...]:
    outputs = []
    for item in optional_sequence(stage_mapping, field_name, context):
        path, flags = _split_declaration(item, f"{context} {field_name} entry")
        flag_context = f"{context} output '{path}'"
        validate_keys(flags, _OUTPUT_FLAG_KEYS[kind], flag_context)
        output = StageOutput(
            path=_normalize_path(path, context),
            cache=optional_bool(flags, "cache", flag_context, default_value=kind != "plot"),
            checkpoint=optional_bool(flags, "checkpoint", flag_context, default_value=False),
            persist=optional_bool(flags, "persist", flag_context, default_value=False),
            kind=kind,
        )
        _validate_checkpoint_flags(output, flags, flag_context)
        outputs.append(output)
    return tuple(outputs)


def _validate_checkpoint_flags(
    output: StageOutput,
    flags: Mapping[str, object],
    context: str,
) -> None:
    if not output.checkpoint:
        return
    if "persist" in flags:
        raise QuiverPipelineError(
            f"Invalid {context}: checkpoint outputs always persist; remove 'persist'."
        )
    if not output.cache:
        raise QuiverPipelineError(
            f"Invalid {context}: checkpoint outputs must be cached; remove 'cache: false'."
        )


def _parse_plot_specs(stage_mapping: Mapping[str, object], context: str) -> tuple[PlotSpec, ...]:
    specs = []
    for item in optional_sequence(stage_mapping, "plots", context):
        path, flags = _split_declaration(item, f"{context} plots entry")
        flag_context = f"{context} plot '{path}'"
        specs.append(
            PlotSpec(
                path=_normalize_path(path, context),
                x=optional_string(flags, "x", flag_context),
                y=optional_string(flags, "y", flag_context),
                title=optional_string(flags, "title", flag_context),
            )
        )
    return tuple(specs)


def _parse_params(stage_mapping: Mapping[str, object], context: str) -> dict[str, tuple[str, ...]]:
    grouped: dict[str, list[str]] = {}
    for item in optional_sequence(stage_mapping, "params", context):
        if isinstance(item, str):
            grouped.setdefault(DEFAULT_PARAMS_FILE_NAME, []).append(item.strip())
            continue
        file_mapping = expect_mapping(item, f"{context} params entry")
        for file_name, keys in file_mapping.items():
            key_rows = expect_sequence(keys, f"{context} params for '{file_name}'")
            grouped.setdefault(_normalize_path(file_name, context), []).extend(
                _expect_string(key, f"{context} param key") for key in key_rows
            )
    return {file_name: tuple(keys) for file_name, keys in grouped.items()}


def _split_declaration(item: object, context: str) -> tuple[str, Mapping[str, object]]:
    if isinstance(item, str):
        return item, {}
    declaration = expect_mapping(item, context)
    if len(declaration) != 1:
        raise QuiverPipelineError(
            f"Invalid {context}: expected a single 'path: {{flags}}' mapping."
        )
    path, raw_flags = next(iter(declaration.items()))
    flags = expect_mapping(raw_flags or {}, f"{context} flags for '{path}'")
    return path, flags


def _expect_string(value: object, context: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise QuiverPipelineError(f"Invalid {context}: expected a non-empty string.")


def _normalize_path(raw_path: str, context: str) -> str:
    candidate = PurePosixPath(raw_path.strip())
    if candidate.is_absolute() or ".." in candidate.parts:
        raise QuiverPipelineError(
            f"Invalid {context} path '{raw_path}': use a path inside the workspace."
        )
    return candidate.as_posix()


def _validate_unique_outputs(stages: Mapping[str, StageDefinition]) -> None:
    owners: dict[str, str] = {}
    for stage in stages.values():
        for output in stage.outs:
            owner = owners.get(output.path)
            if owner is not None:
                raise QuiverPipelineError(
                    f"Output '{output.path}' is declared by both stage '{owner}' and "
                    f"stage '{stage.name}'. Each output must have one producing stage."
                )
            owners[output.path] = stage.name
