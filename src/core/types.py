"""Shared typed models.

This module defines immutable data models used by the cache, tracking,
pipeline, experiment, and SDK layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Mapping

from core.constants import SHORT_ID_LENGTH

ArtifactState = Literal["unchanged", "modified", "deleted", "not_in_cache"]
StageState = Literal[
    "never_run",
    "changed_cmd",
    "changed_deps",
    "changed_params",
    "changed_outs",
    "up_to_date",
]
OutputKind = Literal["out", "metric", "plot"]


@dataclass(frozen=True)
class DirectoryEntry:
    """One file entry of a directory manifest.

    Attributes:
        relpath: POSIX path relative to the directory root.
        checksum: Content checksum of the file.
        size: File size in bytes.
    """

    relpath: str
    checksum: str
    size: int


@dataclass(frozen=True)
class TrackedArtifact:
    """Content-addressed artifact recorded in a tracker file.

    Attributes:
        path: Workspace-relative path, external path, or storage URL.
        checksum: Content checksum; directories carry a ``.dir`` suffix.
        checksum_type: Checksum flavour, e.g. ``sha256`` or ``etag``.
        size: Total size in bytes when known.
        file_count: Number of files for directory artifacts.
        external: Whether canonical storage lives outside the workspace.
    """

    path: str
    checksum: str
    checksum_type: str
    size: int | None = None
    file_count: int | None = None
    external: bool = False

    @property
    def is_directory(self) -> bool:
        """Return whether this artifact is a directory."""
        return self.checksum.endswith(".dir")


@dataclass(frozen=True)
class ArtifactStatus:
    """Workspace state of one tracked artifact."""

    path: str
    state: ArtifactState


@dataclass(frozen=True)
class TransferSummary:
    """Result of a push or pull between the cache and a remote.

    Attributes:
        transferred: Checksums copied during this transfer.
        skipped: Checksums already present at the destination.
    """

    transferred: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()


@dataclass(frozen=True)
class StageOutput:
    """Declared output of a pipeline stage.

    Attributes:
        path: Workspace-relative output path.
        cache: Whether the output is saved into the content cache.
        checkpoint: Whether the output is snapshotted on checkpoint signals.
        persist: Whether the output survives stage re-execution.
        kind: Declaration section, one of out, metric, or plot.
    """

    path: str
    cache: bool = True
    checkpoint: bool = False
    persist: bool = False
    kind: OutputKind = "out"


@dataclass(frozen=True)
class PlotSpec:
    """Plot data declaration attached to a stage."""

    path: str
    x: str | None = None
    y: str | None = None
    title: str | None = None


@dataclass(frozen=True)
class StageDefinition:
    """Validated pipeline stage declaration.

    Attributes:
        name: Stage identifier.
        cmd: Shell command executed in the workspace root.
        deps: Workspace-relative dependency paths.
        params: Parameter keys grouped by params file.
        outs: All declared outputs, metrics, and plots.
        plots: Plot data declarations.
    """

    name: str
    cmd: str
    deps: tuple[str, ...] = ()
    params: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    outs: tuple[StageOutput, ...] = ()
    plots: tuple[PlotSpec, ...] = ()

    @property
    def checkpoint_outs(self) -> tuple[StageOutput, ...]:
        """Return outputs flagged for checkpoint snapshots."""
        return tuple(output for output in self.outs if output.checkpoint)

    @property
    def metric_paths(self) -> tuple[str, ...]:
        """Return metric file paths declared by this stage."""
        return tuple(output.path for output in self.outs if output.kind == "metric")


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage during reproduction."""

    stage_name: str
    state: StageState
    executed: bool


@dataclass(frozen=True)
class Checkpoint:
    """Immutable snapshot of checkpoint outputs and metrics.

    Attributes:
        checkpoint_id: Content-derived identifier.
        experiment: Experiment name the checkpoint was created under.
        parent_id: Predecessor checkpoint id, or None for a chain root.
        step: One-based position within the chain.
        outputs: Output path to content checksum mapping.
        metrics: Flattened numeric metric observations.
        params: Parameter values in effect for the run.
        created_at: UTC creation timestamp.
    """

    checkpoint_id: str
    experiment: str
    parent_id: str | None
    step: int
    outputs: Mapping[str, str]
    metrics: Mapping[str, float]
    params: Mapping[str, object]
    created_at: datetime

    @property
    def short_id(self) -> str:
        """Return the abbreviated checkpoint identifier."""
        return self.checkpoint_id[:SHORT_ID_LENGTH]


@dataclass(frozen=True)
class ExperimentSummary:
    """Listing row for one experiment ref."""

    name: str
    head: str
    checkpoint_count: int
    promoted: bool


@dataclass(frozen=True)
class MetricDiff:
    """Difference of one metric or param key between two snapshots."""

    key: str
    old: object
    new: object
    change: float | None
