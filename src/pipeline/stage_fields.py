"""Type-safe field parsing helpers for stage declarations.

This module centralizes primitive parsing so stage file loading stays
concise and produces consistent validation errors.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from core.errors import QuiverPipelineError


def expect_mapping(value: object, context: str) -> Mapping[str, object]:
    """Validate an object mapping with string keys."""
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise QuiverPipelineError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise QuiverPipelineError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def expect_sequence(value: object, context: str) -> Sequence[object]:
    """Validate a list value, rejecting strings."""
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    raise QuiverPipelineError(f"Invalid {context}: expected list, got {type(value).__name__}.")


def optional_sequence(mapping: Mapping[str, object], field_name: str, context: str) -> Sequence[object]:
    """Read an optional list field, treating a missing field as empty."""
    value = mapping.get(field_name)
    if value is None:
        return ()
    return expect_sequence(value, f"{context} field '{field_name}'")


def required_string(mapping: Mapping[str, object], field_name: str, context: str) -> str:
    """Read a required non-empty string field."""
    value = optional_string(mapping, field_name, context)
    if value is None:
        raise QuiverPipelineError(f"Invalid {context}: missing required field '{field_name}'.")
    return value


def optional_string(mapping: Mapping[str, object], field_name: str, context: str) -> str | None:
    """Read an optional string field."""
    value = mapping.get(field_name)
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    raise QuiverPipelineError(f"Invalid {context}: field '{field_name}' must be a string.")


def optional_bool(
    mapping: Mapping[str, object],
    field_name: str,
    context: str,
    default_value: bool,
) -> bool:
    """Read an optional boolean field."""
    value = mapping.get(field_name)
    if value is None:
        return default_value
    if isinstance(value, bool):
        return value
    raise QuiverPipelineError(f"Invalid {context}: field '{field_name}' must be true or false.")


def validate_keys(mapping: Mapping[str, object], allowed_keys: set[str], context: str) -> None:
    """Reject unknown fields in a mapping."""
    unknown_keys = sorted(set(mapping) - allowed_keys)
    if unknown_keys:
        raise QuiverPipelineError(
            f"Invalid {context}: unknown fields {', '.join(unknown_keys)}."
        )
