"""Runtime configuration model for Quiver.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    CACHE_DIR_NAME,
    DEFAULT_CHECKPOINT_POLL_SECONDS,
    DEFAULT_CHECKPOINT_TIMEOUT_SECONDS,
    ENV_CHECKPOINT_POLL_SECONDS,
    ENV_CHECKPOINT_TIMEOUT_SECONDS,
    ENV_WORKSPACE,
    STATE_DIR_NAME,
)
from core.errors import QuiverConfigError


@dataclass(frozen=True)
class QuiverConfig:
    """Validated runtime configuration.

    Attributes:
        workspace_root: Project directory holding tracked artifacts and stages.
        cache_dir: Optional local cache override; defaults under the state dir.
        s3_region: Optional default AWS region for S3 operations.
        s3_profile: Optional AWS profile for boto3 session initialization.
        s3_endpoint_url: Optional S3-compatible endpoint URL.
        webhdfs_user: Optional user name sent with WebHDFS requests.
        checkpoint_poll_seconds: Polling interval for checkpoint signals.
        checkpoint_timeout_seconds: Maximum wait for a checkpoint to be taken.
    """

    workspace_root: Path
    cache_dir: Path | None
    s3_region: str | None
    s3_profile: str | None
    s3_endpoint_url: str | None
    webhdfs_user: str | None
    checkpoint_poll_seconds: float
    checkpoint_timeout_seconds: float

    @property
    def state_dir(self) -> Path:
        """Return the internal state directory of the workspace."""
        return self.workspace_root / STATE_DIR_NAME

    @property
    def local_cache_dir(self) -> Path:
        """Return the resolved local content cache directory."""
        return self.cache_dir or self.state_dir / CACHE_DIR_NAME

    @classmethod
    def from_env(cls) -> "QuiverConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            QuiverConfigError: If environment values are invalid.
        """
        workspace_value = os.getenv(ENV_WORKSPACE, ".")
        cache_dir_value = os.getenv("QUIVER_CACHE_DIR")
        poll_seconds = _parse_positive_float(
            ENV_CHECKPOINT_POLL_SECONDS,
            os.getenv(ENV_CHECKPOINT_POLL_SECONDS),
            DEFAULT_CHECKPOINT_POLL_SECONDS,
        )
        timeout_seconds = _parse_positive_float(
            ENV_CHECKPOINT_TIMEOUT_SECONDS,
            os.getenv(ENV_CHECKPOINT_TIMEOUT_SECONDS),
            DEFAULT_CHECKPOINT_TIMEOUT_SECONDS,
        )
        return cls(
            workspace_root=Path(workspace_value).expanduser().resolve(),
            cache_dir=Path(cache_dir_value).expanduser().resolve() if cache_dir_value else None,
            s3_region=os.getenv("QUIVER_S3_REGION"),
            s3_profile=os.getenv("QUIVER_S3_PROFILE"),
            s3_endpoint_url=os.getenv("QUIVER_S3_ENDPOINT_URL"),
            webhdfs_user=os.getenv("QUIVER_WEBHDFS_USER"),
            checkpoint_poll_seconds=poll_seconds,
            checkpoint_timeout_seconds=timeout_seconds,
        )


def _parse_positive_float(variable_name: str, raw_value: str | None, default_value: float) -> float:
    """Parse a positive numeric environment value.

    Args:
        variable_name: Environment variable name for error messages.
        raw_value: Raw string from environment, or None when unset.
        default_value: Value used when the variable is unset.

    Returns:
        Parsed positive float.

    Raises:
        QuiverConfigError: If value is not a positive number.
    """
    if raw_value is None:
        return default_value
    try:
        parsed_value = float(raw_value)
    except ValueError as error:
        raise QuiverConfigError(
            f"Invalid {variable_name} value: expected number, got '{raw_value}'. "
            f"Set {variable_name} to a positive numeric value."
        ) from error
    if parsed_value <= 0:
        raise QuiverConfigError(
            f"Invalid {variable_name} value: expected a positive number, got {parsed_value}. "
            f"Set {variable_name} to a value greater than zero."
        )
    return parsed_value
