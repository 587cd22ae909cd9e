"""Stage status evaluation and execution.

This module compares stages against their lock entries, runs stage commands
in the workspace, services checkpoint signals while they run, and records
the resulting dependency, parameter, and output checksums.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, Mapping

from cache.object_cache import ContentCache
from core.config import QuiverConfig
from core.constants import (
    ENV_CHECKPOINT_POLL_SECONDS,
    ENV_CHECKPOINT_TIMEOUT_SECONDS,
    ENV_SIGNAL_DIR,
    ENV_WORKSPACE,
    TMP_DIR_NAME,
)
from core.errors import QuiverPipelineError
from core.hashing import hash_path
from core.logging_config import get_logger
from core.types import StageDefinition, StageOutput, StageResult, StageState
from pipeline.checkpoint_signal import CheckpointCallback, CheckpointSignalWatcher
from pipeline.dag import pipeline_order
from pipeline.lock_file import LockEntry, read_lock_file, write_lock_entry
from pipeline.params import read_param_values
from pipeline.stage_file import load_pipeline

_LOGGER = get_logger(__name__)


class StageRunner:
    """Run pipeline stages of one workspace."""

    def __init__(self, config: QuiverConfig, cache: ContentCache) -> None:
        self._config = config
        self._cache = cache

    @property
    def workspace_root(self) -> Path:
        """Return the workspace directory stages run in."""
        return self._config.workspace_root

    def stage_status(self, stage: StageDefinition) -> StageState:
        """Compare a stage with its lock entry.

        Args:
            stage: Stage definition to evaluate.

        Returns:
            The first detected change, or ``up_to_date``.
        """
        lock_entry = read_lock_file(self.workspace_root).get(stage.name)
        if lock_entry is None:
            return "never_run"
        if lock_entry.cmd != stage.cmd:
            return "changed_cmd"
        if self._dependency_checksums(stage, strict=False) != dict(lock_entry.deps):
            return "changed_deps"
        if self._param_values(stage, strict=False) != _plain_params(lock_entry.params):
            return "changed_params"
        if self._current_output_checksums(stage.outs) != dict(lock_entry.outs):
            return "changed_outs"
        return "up_to_date"

    def run(
        self,
        stage: StageDefinition,
        force: bool = False,
        on_checkpoint: CheckpointCallback | None = None,
    ) -> StageResult:
        """Execute one stage when it changed, or always when forced.

        Args:
            stage: Stage definition to execute.
            force: Run even when the stage is up to date.
            on_checkpoint: Callback invoked for every checkpoint signal.

        Returns:
            Stage result with the pre-run state.

        Raises:
            QuiverPipelineError: If dependencies are missing, the command
                fails, or declared outputs are not produced.
        """
        state = self.stage_status(stage)
        if state == "up_to_date" and not force:
            _LOGGER.info("stage_skipped", stage=stage.name)
            return StageResult(stage_name=stage.name, state=state, executed=False)
        dep_checksums = self._dependency_checksums(stage, strict=True)
        param_values = self._param_values(stage, strict=True)
        self._remove_stale_outputs(stage.outs)
        _LOGGER.info("stage_started", stage=stage.name, state=state, cmd=stage.cmd)
        self._execute(stage, on_checkpoint)
        out_checksums = self.save_outputs(stage.outs)
        write_lock_entry(
            self.workspace_root,
            stage.name,
            LockEntry(cmd=stage.cmd, deps=dep_checksums, params=param_values, outs=out_checksums),
        )
        _LOGGER.info("stage_completed", stage=stage.name, output_count=len(out_checksums))
        return StageResult(stage_name=stage.name, state=state, executed=True)

    def reproduce(
        self,
        targets: Iterable[str] | None = None,
        force: bool = False,
    ) -> list[StageResult]:
        """Run changed stages in dependency order.

        Args:
            targets: Optional stage names; upstream stages are included.
            force: Run every selected stage regardless of its state.

        Returns:
            One result per selected stage in execution order.
        """
        stages = load_pipeline(self.workspace_root)
        return [self.run(stage, force=force) for stage in pipeline_order(stages, targets)]

    def save_outputs(self, outputs: Iterable[StageOutput]) -> dict[str, str]:
        """Hash outputs, saving cached ones into the content cache.

        Raises:
            QuiverPipelineError: If an output does not exist.
        """
        checksums: dict[str, str] = {}
        for output in outputs:
            output_path = self.workspace_root / output.path
            if not output_path.exists():
                raise QuiverPipelineError(
                    f"Stage output '{output.path}' was not produced. "
                    "Make the command write every declared output."
                )
            if output.cache:
                checksum, _ = self._cache.save(output_path)
            else:
                checksum, _ = hash_path(output_path)
            checksums[output.path] = checksum
        return checksums

    def restore_outputs(self, outputs: Mapping[str, str]) -> None:
        """Check cached outputs out of the content cache into the workspace."""
        for path, checksum in outputs.items():
            self._cache.checkout(checksum, self.workspace_root / path)

    def _execute(self, stage: StageDefinition, on_checkpoint: CheckpointCallback | None) -> None:
        signal_dir = self._config.state_dir / TMP_DIR_NAME / "signals" / stage.name
        env = dict(os.environ)
        env[ENV_WORKSPACE] = str(self.workspace_root)
        env[ENV_SIGNAL_DIR] = str(signal_dir)
        env[ENV_CHECKPOINT_POLL_SECONDS] = str(self._config.checkpoint_poll_seconds)
        env[ENV_CHECKPOINT_TIMEOUT_SECONDS] = str(self._config.checkpoint_timeout_seconds)
        watcher = CheckpointSignalWatcher(
            signal_dir,
            on_checkpoint or (lambda: None),
            poll_seconds=self._config.checkpoint_poll_seconds,
        )
        with watcher:
            try:
                completed = subprocess.run(
                    stage.cmd,
                    shell=True,
                    cwd=self.workspace_root,
                    env=env,
                    check=False,
                )
            except OSError as error:
                raise QuiverPipelineError(
                    f"Failed to start stage '{stage.name}': {error}."
                ) from error
        watcher.raise_if_failed()
        if completed.returncode != 0:
            raise QuiverPipelineError(
                f"Stage '{stage.name}' failed with exit code {completed.returncode}. "
                "Fix the command and run it again."
            )

    def remove_outputs(self, outputs: Iterable[StageOutput]) -> None:
        """Delete output paths from the workspace."""
        for output in outputs:
            _remove_path(self.workspace_root / output.path)

    def _remove_stale_outputs(self, outputs: Iterable[StageOutput]) -> None:
        self.remove_outputs(
            output for output in outputs if not (output.persist or output.checkpoint)
        )

    def _dependency_checksums(self, stage: StageDefinition, strict: bool) -> dict[str, str]:
        checksums: dict[str, str] = {}
        for dep in stage.deps:
            dep_path = self.workspace_root / dep
            if not dep_path.exists():
                if strict:
                    raise QuiverPipelineError(
                        f"Dependency '{dep}' of stage '{stage.name}' does not exist. "
                        "Create it or run the stage producing it first."
                    )
                continue
            checksums[dep], _ = hash_path(dep_path)
        return checksums

    def _param_values(self, stage: StageDefinition, strict: bool) -> dict[str, dict[str, object]]:
        try:
            return read_param_values(self.workspace_root, stage.params)
        except QuiverPipelineError:
            if strict:
                raise
            return {}

    def _current_output_checksums(self, outputs: Iterable[StageOutput]) -> dict[str, str]:
        checksums: dict[str, str] = {}
        for output in outputs:
            output_path = self.workspace_root / output.path
            if output_path.exists():
                checksums[output.path], _ = hash_path(output_path)
        return checksums


def _plain_params(params: Mapping[str, Mapping[str, object]]) -> dict[str, dict[str, object]]:
    return {file_name: dict(values) for file_name, values in params.items()}


def _remove_path(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()
