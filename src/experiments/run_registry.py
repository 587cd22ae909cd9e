"""Experiment run lifecycle persistence.

This module stores lifecycle state transitions of experiment runs under the
workspace state directory so interrupted or failed runs remain inspectable.
"""

from __future__ import annotations

from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from core.constants import RUN_INDEX_FILE_NAME, RUN_STATE_FILE_NAME, RUNS_DIR_NAME
from core.errors import QuiverExperimentError
from core.json_io import read_json_file, write_json_file
from experiments.run_types import (
    RunEvent,
    RunRecord,
    RunState,
    run_record_from_payload,
    validate_transition,
)


class RunRegistry:
    """Persistent lifecycle registry for experiment runs."""

    def __init__(self, state_dir: Path) -> None:
        self._runs_root = state_dir / RUNS_DIR_NAME
        self._runs_root.mkdir(parents=True, exist_ok=True)

    def start_run(self, experiment: str, stage: str, base_checkpoint: str | None) -> RunRecord:
        """Create a new queued run record."""
        timestamp = _utc_now_iso()
        record = RunRecord(
            run_id=_build_run_id(),
            experiment=experiment,
            stage=stage,
            base_checkpoint=base_checkpoint,
            state="queued",
            created_at=timestamp,
            updated_at=timestamp,
            events=(RunEvent(state="queued", timestamp=timestamp, message=None),),
        )
        self._write_run_record(record)
        self._append_index_row(record.run_id)
        return record

    def transition(
        self,
        run_id: str,
        next_state: RunState,
        message: str | None = None,
        head_checkpoint: str | None = None,
    ) -> RunRecord:
        """Persist one lifecycle transition and an optional new head checkpoint."""
        record = self._load_run_record(run_id)
        validate_transition(record.state, next_state)
        timestamp = _utc_now_iso()
        next_record = replace(
            record,
            state=next_state,
            updated_at=timestamp,
            events=record.events
            + (RunEvent(state=next_state, timestamp=timestamp, message=message),),
            head_checkpoint=head_checkpoint or record.head_checkpoint,
            checkpoint_count=record.checkpoint_count + (1 if head_checkpoint else 0),
            error_message=message
            if next_state in {"failed", "cancelled"}
            else record.error_message,
        )
        self._write_run_record(next_record)
        return next_record

    def load_run(self, run_id: str) -> RunRecord:
        """Load one run lifecycle record by ID."""
        return self._load_run_record(run_id)

    def list_runs(self) -> tuple[str, ...]:
        """List run IDs from lifecycle index in insertion order."""
        return tuple(str(item) for item in self._read_index()["runs"])

    def _write_run_record(self, record: RunRecord) -> None:
        payload = asdict(record)
        payload["events"] = [asdict(event) for event in record.events]
        write_json_file(
            self._runs_root / record.run_id / RUN_STATE_FILE_NAME,
            payload,
            error_type=QuiverExperimentError,
        )

    def _load_run_record(self, run_id: str) -> RunRecord:
        state_path = self._runs_root / run_id / RUN_STATE_FILE_NAME
        if not state_path.is_file():
            raise QuiverExperimentError(
                f"Experiment run '{run_id}' not found. List runs to find a valid ID."
            )
        payload = read_json_file(state_path, error_type=QuiverExperimentError)
        if not isinstance(payload, dict):
            raise QuiverExperimentError(
                f"Invalid run state payload at {state_path}: expected object."
            )
        return run_record_from_payload(payload, state_path)

    def _append_index_row(self, run_id: str) -> None:
        payload = self._read_index()
        run_ids = payload["runs"]
        if run_id not in run_ids:
            run_ids.append(run_id)
            write_json_file(
                self._runs_root / RUN_INDEX_FILE_NAME,
                payload,
                error_type=QuiverExperimentError,
            )

    def _read_index(self) -> dict[str, list[object]]:
        index_path = self._runs_root / RUN_INDEX_FILE_NAME
        payload = read_json_file(
            index_path,
            default_value={"runs": []},
            error_type=QuiverExperimentError,
        )
        if not isinstance(payload, dict) or not isinstance(payload.get("runs"), list):
            raise QuiverExperimentError(
                f"Invalid run index format at {index_path}: expected runs list."
            )
        return payload


def _build_run_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"run-{timestamp}-{uuid4().hex[:8]}"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
