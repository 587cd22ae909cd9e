"""Quiver exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations


class QuiverError(Exception):
    """Base exception for all Quiver failures."""


class QuiverConfigError(QuiverError):
    """Raised for invalid runtime or remote configuration."""


class QuiverCacheError(QuiverError):
    """Raised for content cache read, write, and checkout failures."""


class QuiverTrackingError(QuiverError):
    """Raised for tracked artifact and tracker file failures."""


class QuiverRemoteError(QuiverError):
    """Raised for storage location and remote transfer failures."""


class QuiverPipelineError(QuiverError):
    """Raised for invalid stage declarations and stage execution failures."""


class QuiverExperimentError(QuiverError):
    """Raised for checkpoint, experiment ref, and lifecycle failures."""


class QuiverDependencyError(QuiverError):
    """Raised when an optional runtime dependency is missing."""
