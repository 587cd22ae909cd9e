"""Python SDK for data tracking, pipelines, and experiments.

This module exposes one client that wires the content cache, remote
registry, artifact tracker, stage runner, and experiment manager of a
workspace together.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Iterable, Mapping

from cache.object_cache import ContentCache
from core.config import QuiverConfig
from core.errors import QuiverPipelineError
from core.locations import Location
from core.types import (
    ArtifactStatus,
    Checkpoint,
    ExperimentSummary,
    MetricDiff,
    StageDefinition,
    StageResult,
    TrackedArtifact,
    TransferSummary,
)
from experiments.manager import ExperimentManager
from experiments.metrics import diff_metrics, read_metrics
from pipeline.lock_file import read_lock_file
from pipeline.plots import collect_plot_points
from pipeline.stage_file import load_pipeline, pipeline_file_path
from pipeline.stage_runner import StageRunner
from remote.base import StorageBackend
from remote.factory import backend_for
from remote.registry import RemoteDefinition, RemoteRegistry
from remote.transfer import pull, push
from tracking.artifact_tracker import ArtifactTracker, BackendFactory

WORKSPACE_REF = "workspace"


class QuiverClient:
    """Primary SDK entry point for one workspace."""

    def __init__(
        self,
        config: QuiverConfig | None = None,
        backend_factory: BackendFactory | None = None,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration; read from env when omitted.
            backend_factory: Optional override mapping locations to backends.
        """
        self._config = config or QuiverConfig.from_env()
        self._backend_factory = backend_factory
        self._cache = ContentCache(self._config.local_cache_dir)
        self._remotes = RemoteRegistry(self._config.state_dir, self._config.workspace_root)
        self._tracker = ArtifactTracker(
            self._config,
            self._cache,
            self._remotes,
            backend_factory=backend_factory,
        )
        self._runner = StageRunner(self._config, self._cache)
        self._experiments = ExperimentManager(self._config, self._cache, runner=self._runner)

    @property
    def config(self) -> QuiverConfig:
        """Return the runtime configuration."""
        return self._config

    @property
    def cache(self) -> ContentCache:
        """Return the local content cache."""
        return self._cache

    def with_workspace(self, workspace_root: Path | str) -> "QuiverClient":
        """Return a client bound to another workspace with the same settings."""
        config = replace(self._config, workspace_root=Path(workspace_root).expanduser().resolve())
        return QuiverClient(config, backend_factory=self._backend_factory)

    def add(self, target: str, external: bool = False) -> TrackedArtifact:
        """Start tracking a workspace path or external location.

        Raises:
            QuiverTrackingError: If the target is invalid or lacks an external cache.
        """
        return self._tracker.add(target, external=external)

    def status(self) -> list[ArtifactStatus]:
        """Return workspace state of every tracked artifact."""
        return self._tracker.status()

    def checkout(self, targets: Iterable[str] | None = None) -> list[TrackedArtifact]:
        """Restore tracked artifacts from their caches."""
        return self._tracker.checkout(targets)

    def remove(self, target: str) -> Path:
        """Stop tracking an artifact; return the deleted tracker file."""
        return self._tracker.remove(target)

    def push(self, remote: str | None = None) -> TransferSummary:
        """Upload cached workspace, pipeline, and checkpoint objects to a remote.

        Args:
            remote: Remote name; the default remote when omitted.

        Returns:
            Transfer summary.

        Raises:
            QuiverConfigError: If no matching remote is configured.
            QuiverCacheError: If a tracked object is missing locally.
        """
        remote_root = self._remotes.resolve(remote)
        return push(self._cache, self._backend(remote_root), remote_root, self._pushable())

    def pull(self, remote: str | None = None) -> TransferSummary:
        """Download missing objects from a remote and check artifacts out.

        Pipeline and checkpoint outputs that were never pushed are left out.

        Raises:
            QuiverRemoteError: If a tracked artifact object is missing or
                corrupted remotely.
        """
        remote_root = self._remotes.resolve(remote)
        summary = pull(
            self._cache,
            self._backend(remote_root),
            remote_root,
            self._tracker.used_checksums(),
            optional=self._pipeline_checksums() | self._experiments.used_checksums(),
        )
        self._tracker.checkout_workspace()
        return summary

    def add_remote(self, name: str, url: str, default: bool = False) -> RemoteDefinition:
        """Register a push/pull remote."""
        return self._remotes.add_remote(name, url, default=default)

    def remove_remote(self, name: str) -> None:
        """Delete a push/pull remote."""
        self._remotes.remove_remote(name)

    def list_remotes(self) -> list[RemoteDefinition]:
        """Return configured remotes sorted by name."""
        return self._remotes.list_remotes()

    def set_external_cache(self, url: str) -> Location:
        """Register the external cache for the URL's storage scheme."""
        return self._remotes.set_external_cache(url)

    def external_caches(self) -> dict[str, str]:
        """Return external cache URLs keyed by scheme."""
        return self._remotes.external_caches()

    def stages(self) -> dict[str, StageDefinition]:
        """Load stage definitions of the workspace."""
        return load_pipeline(self._config.workspace_root)

    def reproduce(
        self,
        targets: Iterable[str] | None = None,
        force: bool = False,
    ) -> list[StageResult]:
        """Run changed pipeline stages in dependency order."""
        return self._runner.reproduce(targets, force=force)

    def run_experiment(
        self,
        stage: str | None = None,
        name: str | None = None,
        params: Mapping[str, object] | None = None,
        reset: bool = False,
        resume: str | None = None,
    ) -> ExperimentSummary:
        """Run the checkpointing stage as an experiment.

        Args:
            stage: Optional target stage.
            name: Optional name for a new experiment.
            params: Parameter overrides keyed ``key`` or ``file:key``.
            reset: Start a new chain from scratch.
            resume: Experiment to continue.

        Returns:
            Experiment summary after the run.
        """
        return self._experiments.run(
            stage=stage,
            name=name,
            params=params,
            reset=reset,
            resume=resume,
        )

    def list_experiments(self) -> list[ExperimentSummary]:
        """List experiments with their heads and promotion state."""
        return self._experiments.list_experiments()

    def show_experiment(self, ref_or_id: str) -> list[Checkpoint]:
        """Return the checkpoints of an experiment, newest first."""
        return self._experiments.show(ref_or_id)

    def diff_experiments(
        self,
        first: str,
        second: str,
    ) -> tuple[list[MetricDiff], list[MetricDiff]]:
        """Compare metrics and params of two refs or checkpoints."""
        return self._experiments.diff(first, second)

    def apply_checkpoint(self, ref_or_id: str) -> Checkpoint:
        """Restore a checkpoint into the workspace."""
        return self._experiments.apply(ref_or_id)

    def branch_experiment(self, experiment: str, branch_name: str) -> str:
        """Promote an experiment to a permanent branch ref."""
        return self._experiments.branch(experiment, branch_name)

    def remove_experiments(self, names: Iterable[str]) -> list[str]:
        """Delete experiment refs."""
        return self._experiments.remove(names)

    def gc_experiments(self, keep: Iterable[str] = ()) -> list[str]:
        """Remove unpromoted experiments not listed in ``keep``."""
        return self._experiments.gc(keep)

    def gc_cache(self, include_experiments: bool = True) -> tuple[str, ...]:
        """Delete cache objects no tracked artifact, lock entry, or checkpoint uses.

        Args:
            include_experiments: Keep outputs of checkpoints reachable from refs.

        Returns:
            Removed checksums.
        """
        return self._cache.collect_garbage(self.used_checksums(include_experiments))

    def used_checksums(self, include_experiments: bool = True) -> set[str]:
        """Return checksums referenced by the workspace and, optionally, experiments."""
        used = self._tracker.used_checksums() | self._pipeline_checksums()
        if include_experiments:
            used |= self._experiments.used_checksums()
        return used

    def metrics_diff(self, first: str, second: str = WORKSPACE_REF) -> list[MetricDiff]:
        """Compare metrics of two refs, checkpoints, or the workspace.

        Args:
            first: Ref, checkpoint id, or ``workspace``.
            second: Ref, checkpoint id, or ``workspace``.

        Returns:
            Metric diff rows sorted by key.
        """
        return diff_metrics(self._metrics_for(first), self._metrics_for(second))

    def plot_points(self, stage_name: str) -> dict[str, list[tuple[object, object]]]:
        """Return plot points of every plot declared by a stage.

        Raises:
            QuiverPipelineError: If the stage is unknown or plot data is invalid.
        """
        stage = self._stage(stage_name)
        return {
            spec.path: collect_plot_points(self._config.workspace_root, spec)
            for spec in stage.plots
        }

    def _metrics_for(self, ref: str) -> dict[str, float]:
        if ref != WORKSPACE_REF:
            return dict(self._experiments.checkpoints.read(self._experiments.resolve(ref)).metrics)
        metrics: dict[str, float] = {}
        for stage in self.stages().values():
            for metric_path in stage.metric_paths:
                full_path = self._config.workspace_root / metric_path
                if full_path.is_file():
                    metrics.update(read_metrics(full_path))
        return metrics

    def _stage(self, stage_name: str) -> StageDefinition:
        stages = self.stages()
        if stage_name not in stages:
            raise QuiverPipelineError(
                f"Unknown stage '{stage_name}'. Available stages: {', '.join(stages)}."
            )
        return stages[stage_name]

    def _pipeline_checksums(self) -> set[str]:
        workspace_root = self._config.workspace_root
        if not pipeline_file_path(workspace_root).is_file():
            return set()
        cached_paths = {
            output.path
            for stage in load_pipeline(workspace_root).values()
            for output in stage.outs
            if output.cache
        }
        return {
            checksum
            for entry in read_lock_file(workspace_root).values()
            for path, checksum in entry.outs.items()
            if path in cached_paths
        }

    def _pushable(self) -> set[str]:
        optional = self._pipeline_checksums() | self._experiments.used_checksums()
        return self._tracker.used_checksums() | {
            checksum for checksum in optional if self._cache.contains(checksum)
        }

    def _backend(self, location: Location) -> StorageBackend:
        if self._backend_factory is not None:
            return self._backend_factory(location)
        return backend_for(location, self._config)
