"""Public SDK surface for Quiver.

This module provides a stable import path for users and training scripts.
It re-exports the primary client, typed models, and the checkpoint hook.
"""

from __future__ import annotations

from core.config import QuiverConfig
from core.errors import QuiverError
from core.types import (
    ArtifactStatus,
    Checkpoint,
    ExperimentSummary,
    MetricDiff,
    PlotSpec,
    StageDefinition,
    StageOutput,
    StageResult,
    TrackedArtifact,
    TransferSummary,
)
from pipeline.checkpoint_signal import make_checkpoint
from sdk.client import QuiverClient

__all__ = [
    "ArtifactStatus",
    "Checkpoint",
    "ExperimentSummary",
    "MetricDiff",
    "PlotSpec",
    "QuiverClient",
    "QuiverConfig",
    "QuiverError",
    "StageDefinition",
    "StageOutput",
    "StageResult",
    "TrackedArtifact",
    "TransferSummary",
    "make_checkpoint",
]
