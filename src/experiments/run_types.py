"""Typed experiment run lifecycle models and validation helpers.

This module defines lifecycle states and payload parsing used by the run
registry and SDK calls that inspect persisted experiment run metadata.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, cast

from core.errors import QuiverExperimentError

RunState = Literal[
    "queued",
    "running",
    "checkpointing",
    "completed",
    "failed",
    "cancelled",
]
ALLOWED_STATE_TRANSITIONS: dict[RunState, tuple[RunState, ...]] = {
    "queued": ("running", "failed", "cancelled"),
    "running": ("checkpointing", "completed", "failed", "cancelled"),
    "checkpointing": ("running", "completed", "failed", "cancelled"),
    "completed": (),
    "failed": (),
    "cancelled": (),
}


@dataclass(frozen=True)
class RunEvent:
    """One lifecycle state transition event."""

    state: RunState
    timestamp: str
    message: str | None


@dataclass(frozen=True)
class RunRecord:
    """Persisted experiment run lifecycle metadata."""

    run_id: str
    experiment: str
    stage: str
    base_checkpoint: str | None
    state: RunState
    created_at: str
    updated_at: str
    events: tuple[RunEvent, ...]
    head_checkpoint: str | None = None
    checkpoint_count: int = 0
    error_message: str | None = None


def validate_transition(current: RunState, next_state: RunState) -> None:
    """Validate one lifecycle transition against allowed state machine edges."""
    allowed_states = ALLOWED_STATE_TRANSITIONS[current]
    if next_state not in allowed_states:
        raise QuiverExperimentError(
            f"Invalid experiment run state transition {current!r} -> {next_state!r}. "
            f"Allowed: {', '.join(allowed_states) or 'none'}."
        )


def run_record_from_payload(payload: dict[str, object], payload_path: Path) -> RunRecord:
    """Deserialize a lifecycle record payload from JSON."""
    raw_events = payload.get("events")
    if not isinstance(raw_events, list):
        raise QuiverExperimentError(f"Invalid run state at {payload_path}: events must be a list.")
    events = tuple(run_event_from_payload(item, payload_path) for item in raw_events)
    try:
        return RunRecord(
            run_id=str(payload["run_id"]),
            experiment=str(payload["experiment"]),
            stage=str(payload["stage"]),
            base_checkpoint=optional_string(payload.get("base_checkpoint")),
            state=parse_state(payload.get("state"), payload_path),
            created_at=str(payload["created_at"]),
            updated_at=str(payload["updated_at"]),
            events=events,
            head_checkpoint=optional_string(payload.get("head_checkpoint")),
            checkpoint_count=int(str(payload.get("checkpoint_count", 0))),
            error_message=optional_string(payload.get("error_message")),
        )
    except KeyError as error:
        raise QuiverExperimentError(
            f"Invalid run state at {payload_path}: missing required field {error.args[0]!r}."
        ) from error


def run_event_from_payload(payload: object, payload_path: Path) -> RunEvent:
    """Deserialize one run event payload from JSON."""
    if not isinstance(payload, dict):
        raise QuiverExperimentError(f"Invalid run event at {payload_path}: expected object entries.")
    return RunEvent(
        state=parse_state(payload.get("state"), payload_path),
        timestamp=str(payload.get("timestamp", "")),
        message=optional_string(payload.get("message")),
    )


def parse_state(raw_state: object, payload_path: Path) -> RunState:
    """Parse one run state value from persisted payload."""
    if isinstance(raw_state, str) and raw_state in ALLOWED_STATE_TRANSITIONS:
        return cast(RunState, raw_state)
    allowed = ", ".join(ALLOWED_STATE_TRANSITIONS.keys())
    raise QuiverExperimentError(f"Invalid run state at {payload_path}: expected one of {allowed}.")


def optional_string(raw_value: object) -> str | None:
    """Convert optional payload field to string when present."""
    if raw_value is None:
        return None
    return str(raw_value)
