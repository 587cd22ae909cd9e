"""Experiment lifecycle orchestration.

This module runs checkpointing stages as named experiments, commits a
checkpoint for every signal raised by the running command, and exposes
listing, diffing, applying, promotion, and garbage collection of
experiment refs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping
from uuid import uuid4

from cache.object_cache import ContentCache
from core.config import QuiverConfig
from core.constants import (
    APPLIED_CHECKPOINT_FILE_NAME,
    DEFAULT_PARAMS_FILE_NAME,
    EXPERIMENT_NAME_PREFIX,
)
from core.errors import QuiverError, QuiverExperimentError
from core.logging_config import get_logger
from core.types import Checkpoint, ExperimentSummary, MetricDiff, StageDefinition
from experiments.checkpoint_store import CheckpointStore
from experiments.metrics import diff_metrics, read_metrics
from experiments.refs import RefStore
from experiments.run_registry import RunRegistry
from pipeline.dag import pipeline_order
from pipeline.params import apply_param_overrides, flatten_param_values, read_param_values
from pipeline.stage_file import load_pipeline
from pipeline.stage_runner import StageRunner

_LOGGER = get_logger(__name__)


class ExperimentManager:
    """Run and manage checkpointed experiments of one workspace."""

    def __init__(
        self,
        config: QuiverConfig,
        cache: ContentCache,
        runner: StageRunner | None = None,
    ) -> None:
        self._config = config
        self._runner = runner or StageRunner(config, cache)
        self._refs = RefStore(config.state_dir)
        self._checkpoints = CheckpointStore(config.state_dir)
        self._runs = RunRegistry(config.state_dir)

    @property
    def runner(self) -> StageRunner:
        """Return the stage runner used for experiment stages."""
        return self._runner

    @property
    def checkpoints(self) -> CheckpointStore:
        """Return the checkpoint object store."""
        return self._checkpoints

    @property
    def runs(self) -> RunRegistry:
        """Return the experiment run registry."""
        return self._runs

    def run(
        self,
        stage: str | None = None,
        name: str | None = None,
        params: Mapping[str, object] | None = None,
        reset: bool = False,
        resume: str | None = None,
    ) -> ExperimentSummary:
        """Run the checkpointing stage as an experiment.

        Args:
            stage: Target stage; defaults to the whole pipeline.
            name: Experiment name for a new experiment.
            params: Overrides keyed ``key`` or ``file:key``, written before running.
            reset: Delete checkpoint outputs and start a new chain.
            resume: Existing experiment whose chain is continued.

        Returns:
            Summary of the experiment after the run.

        Raises:
            QuiverExperimentError: If the arguments conflict, the experiment
                name is taken, or the pipeline has no single checkpointing stage.
            QuiverPipelineError: If a stage fails.
        """
        if reset and resume:
            raise QuiverExperimentError("Cannot combine reset with resume. Choose one of them.")
        if resume and name and name != resume:
            raise QuiverExperimentError(
                "Cannot rename an experiment while resuming it. Drop the name or resume flag."
            )
        stages = load_pipeline(self._config.workspace_root)
        ordered = pipeline_order(stages, [stage] if stage else None)
        checkpoint_stage = _single_checkpoint_stage(ordered)
        experiment, parent_id = self._prepare_chain(checkpoint_stage, name, reset, resume)
        _apply_overrides(self._config.workspace_root, params or {})
        record = self._runs.start_run(experiment, checkpoint_stage.name, parent_id)
        self._runs.transition(record.run_id, "running")
        session = _CheckpointSession(self, experiment, checkpoint_stage, record.run_id, parent_id)
        _LOGGER.info("experiment_started", experiment=experiment, base=parent_id)
        try:
            for item in ordered:
                if item.name == checkpoint_stage.name:
                    self._runner.run(item, force=True, on_checkpoint=session.commit)
                else:
                    self._runner.run(item)
            session.commit_final()
        except QuiverError as error:
            self._runs.transition(record.run_id, "failed", message=str(error))
            _LOGGER.error("experiment_failed", experiment=experiment, error=str(error))
            raise
        except KeyboardInterrupt:
            self._runs.transition(record.run_id, "cancelled", message="interrupted")
            raise
        self._runs.transition(record.run_id, "completed")
        self._applied_path.unlink(missing_ok=True)
        _LOGGER.info(
            "experiment_completed",
            experiment=experiment,
            head=session.head_id,
            checkpoint_count=session.commit_count,
        )
        return self._summary(experiment, self._promoted_ids())

    def list_experiments(self) -> list[ExperimentSummary]:
        """List every experiment ref in name order."""
        promoted = self._promoted_ids()
        return [self._summary(name, promoted) for name in self._refs.list("exps")]

    def show(self, ref_or_id: str) -> list[Checkpoint]:
        """Return the checkpoint chain of a ref or checkpoint, newest first."""
        return list(self._checkpoints.iter_chain(self.resolve(ref_or_id)))

    def diff(self, first: str, second: str) -> tuple[list[MetricDiff], list[MetricDiff]]:
        """Compare metrics and params between two refs or checkpoint ids.

        Returns:
            Pair of metric diff rows and param diff rows.
        """
        old = self._checkpoints.read(self.resolve(first))
        new = self._checkpoints.read(self.resolve(second))
        return diff_metrics(old.metrics, new.metrics), diff_metrics(old.params, new.params)

    def apply(self, ref_or_id: str) -> Checkpoint:
        """Restore a checkpoint's outputs and params into the workspace.

        The checkpoint becomes the branch point of the next experiment run.
        """
        checkpoint = self._checkpoints.read(self.resolve(ref_or_id))
        self._runner.restore_outputs(checkpoint.outputs)
        _apply_overrides(self._config.workspace_root, checkpoint.params)
        self._applied_path.parent.mkdir(parents=True, exist_ok=True)
        self._applied_path.write_text(checkpoint.checkpoint_id + "\n", encoding="utf-8")
        _LOGGER.info("checkpoint_applied", checkpoint=checkpoint.short_id)
        return checkpoint

    def applied_checkpoint(self) -> str | None:
        """Return the checkpoint applied since the last experiment run."""
        if not self._applied_path.is_file():
            return None
        return self._applied_path.read_text(encoding="utf-8").strip() or None

    def branch(self, experiment: str, branch_name: str) -> str:
        """Promote an experiment head to a permanent branch ref.

        Raises:
            QuiverExperimentError: If the branch already exists.
        """
        head_id = self.resolve(experiment)
        if self._refs.read("branches", branch_name) is not None:
            raise QuiverExperimentError(
                f"Branch '{branch_name}' already exists. Choose another branch name."
            )
        self._refs.write("branches", branch_name, head_id)
        _LOGGER.info("experiment_promoted", experiment=experiment, branch=branch_name)
        return head_id

    def remove(self, names: Iterable[str]) -> list[str]:
        """Delete experiment refs.

        Raises:
            QuiverExperimentError: If any name is not an experiment.
        """
        names = list(names)
        missing = [name for name in names if self._refs.read("exps", name) is None]
        if missing:
            raise QuiverExperimentError(f"Unknown experiments: {', '.join(missing)}.")
        for name in names:
            self._refs.delete("exps", name)
        return names

    def gc(self, keep: Iterable[str] = ()) -> list[str]:
        """Remove unpromoted experiments and unreachable checkpoint objects.

        Args:
            keep: Experiment names that survive even when unpromoted.

        Returns:
            Names of removed experiments.
        """
        keep_names = set(keep)
        promoted = self._promoted_ids()
        removed = [
            name
            for name, head_id in self._refs.list("exps").items()
            if name not in keep_names and head_id not in promoted
        ]
        for name in removed:
            self._refs.delete("exps", name)
        reachable = self.reachable_ids()
        dropped = [item for item in self._checkpoints.all_ids() if item not in reachable]
        for checkpoint_id in dropped:
            self._checkpoints.delete(checkpoint_id)
        _LOGGER.info("experiment_gc", removed=removed, dropped_checkpoints=len(dropped))
        return removed

    def resolve(self, ref_or_id: str) -> str:
        """Resolve an experiment, branch, or checkpoint id prefix to a full id."""
        for kind in ("exps", "branches"):
            head_id = self._refs.read(kind, ref_or_id) if _is_ref_name(ref_or_id) else None
            if head_id is not None:
                return head_id
        return self._checkpoints.resolve(ref_or_id)

    def reachable_ids(self) -> set[str]:
        """Return ids of every checkpoint reachable from refs or the applied checkpoint."""
        heads = list(self._refs.list("exps").values()) + list(self._refs.list("branches").values())
        applied = self.applied_checkpoint()
        if applied:
            heads.append(applied)
        reachable: set[str] = set()
        for head_id in heads:
            for checkpoint in self._checkpoints.iter_chain(head_id):
                if checkpoint.checkpoint_id in reachable:
                    break
                reachable.add(checkpoint.checkpoint_id)
        return reachable

    def used_checksums(self) -> set[str]:
        """Return output checksums of every reachable checkpoint."""
        return {
            checksum
            for checkpoint_id in self.reachable_ids()
            for checksum in self._checkpoints.read(checkpoint_id).outputs.values()
        }

    def commit_checkpoint(
        self,
        experiment: str,
        stage: StageDefinition,
        parent_id: str | None,
    ) -> Checkpoint:
        """Snapshot checkpoint outputs, metrics, and params and move the experiment ref."""
        workspace_root = self._config.workspace_root
        outputs = self._runner.save_outputs(stage.checkpoint_outs)
        metrics: dict[str, float] = {}
        for metric_path in stage.metric_paths:
            if (workspace_root / metric_path).is_file():
                metrics.update(read_metrics(workspace_root / metric_path))
        params = flatten_param_values(read_param_values(workspace_root, stage.params))
        checkpoint = self._checkpoints.create(experiment, parent_id, outputs, metrics, params)
        self._refs.write("exps", experiment, checkpoint.checkpoint_id)
        _LOGGER.info(
            "checkpoint_committed",
            experiment=experiment,
            checkpoint=checkpoint.short_id,
            step=checkpoint.step,
        )
        return checkpoint

    @property
    def _applied_path(self) -> Path:
        return self._config.state_dir / APPLIED_CHECKPOINT_FILE_NAME

    def _prepare_chain(
        self,
        stage: StageDefinition,
        name: str | None,
        reset: bool,
        resume: str | None,
    ) -> tuple[str, str | None]:
        if resume:
            head_id = self._refs.read("exps", resume)
            if head_id is None:
                raise QuiverExperimentError(
                    f"Experiment '{resume}' not found. Use 'quiver exp show' to list experiments."
                )
            self._runner.restore_outputs(self._checkpoints.read(head_id).outputs)
            return resume, head_id
        experiment = name or self._new_experiment_name()
        if self._refs.read("exps", experiment) is not None:
            raise QuiverExperimentError(
                f"Experiment '{experiment}' already exists. Resume it or choose another name."
            )
        if reset:
            self._runner.remove_outputs(stage.checkpoint_outs)
            return experiment, None
        return experiment, self.applied_checkpoint()

    def _new_experiment_name(self) -> str:
        existing = self._refs.list("exps")
        while True:
            candidate = f"{EXPERIMENT_NAME_PREFIX}-{uuid4().hex[:5]}"
            if candidate not in existing:
                return candidate

    def _promoted_ids(self) -> set[str]:
        promoted: set[str] = set()
        for head_id in self._refs.list("branches").values():
            promoted.update(item.checkpoint_id for item in self._checkpoints.iter_chain(head_id))
        return promoted

    def _summary(self, name: str, promoted: set[str]) -> ExperimentSummary:
        head_id = self._refs.read("exps", name)
        if head_id is None:
            raise QuiverExperimentError(f"Experiment '{name}' not found.")
        return ExperimentSummary(
            name=name,
            head=head_id,
            checkpoint_count=sum(1 for _ in self._checkpoints.iter_chain(head_id)),
            promoted=head_id in promoted,
        )


class _CheckpointSession:
    """Mutable chain state of one experiment run."""

    def __init__(
        self,
        manager: ExperimentManager,
        experiment: str,
        stage: StageDefinition,
        run_id: str,
        parent_id: str | None,
    ) -> None:
        self._manager = manager
        self._experiment = experiment
        self._stage = stage
        self._run_id = run_id
        self.head_id = parent_id
        self.commit_count = 0

    def commit(self) -> None:
        """Commit one checkpoint on top of the current head."""
        runs = self._manager.runs
        runs.transition(self._run_id, "checkpointing")
        checkpoint = self._manager.commit_checkpoint(self._experiment, self._stage, self.head_id)
        self.head_id = checkpoint.checkpoint_id
        self.commit_count += 1
        runs.transition(self._run_id, "running", head_checkpoint=checkpoint.checkpoint_id)

    def commit_final(self) -> None:
        """Commit a last checkpoint when outputs moved past the current head."""
        if self.commit_count and self.head_id:
            head = self._manager.checkpoints.read(self.head_id)
            current = self._manager.runner.save_outputs(self._stage.checkpoint_outs)
            if dict(head.outputs) == current:
                return
        self.commit()


def _single_checkpoint_stage(stages: list[StageDefinition]) -> StageDefinition:
    checkpointing = [stage for stage in stages if stage.checkpoint_outs]
    if not checkpointing:
        raise QuiverExperimentError(
            "No stage declares checkpoint outputs. Mark an output with 'checkpoint: true'."
        )
    if len(checkpointing) > 1:
        names = ", ".join(stage.name for stage in checkpointing)
        raise QuiverExperimentError(
            f"Several stages declare checkpoint outputs ({names}). Run one stage at a time."
        )
    return checkpointing[0]


def _apply_overrides(workspace_root: Path, params: Mapping[str, object]) -> None:
    grouped: dict[str, dict[str, object]] = {}
    for raw_key, value in params.items():
        file_name, separator, key = raw_key.rpartition(":")
        grouped.setdefault(file_name if separator else DEFAULT_PARAMS_FILE_NAME, {})[key] = value
    for file_name, overrides in grouped.items():
        apply_param_overrides(workspace_root / file_name, overrides)


def _is_ref_name(value: str) -> bool:
    return bool(value) and value[0].isalnum() and all(
        character.isalnum() or character in "._-" for character in value
    )
