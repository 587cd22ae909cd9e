"""Checkpoint signalling between a running command and the stage runner.

The running command calls :func:`make_checkpoint`, which drops a signal file
into ``$QUIVER_SIGNAL_DIR`` and blocks until the runner removes it. The
runner's :class:`CheckpointSignalWatcher` thread notices the file, commits
the checkpoint through its callback, and deletes the file to release the
command.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Callable

from core.config import QuiverConfig
from core.constants import (
    CHECKPOINT_SIGNAL_FILE_NAME,
    DEFAULT_CHECKPOINT_POLL_SECONDS,
    ENV_SIGNAL_DIR,
)
from core.errors import QuiverExperimentError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

CheckpointCallback = Callable[[], None]


def make_checkpoint(
    poll_seconds: float | None = None,
    timeout_seconds: float | None = None,
) -> bool:
    """Request a checkpoint from the runner and wait until it is taken.

    Outside a Quiver run (``QUIVER_SIGNAL_DIR`` unset) this does nothing.

    Args:
        poll_seconds: Interval between signal file checks; read from
            ``QUIVER_CHECKPOINT_POLL_SECONDS`` when omitted.
        timeout_seconds: Maximum time to wait for the runner; read from
            ``QUIVER_CHECKPOINT_TIMEOUT_SECONDS`` when omitted.

    Returns:
        True when a checkpoint was taken, False outside a Quiver run.

    Raises:
        QuiverExperimentError: If the runner does not take the checkpoint in time.
    """
    signal_dir_value = os.getenv(ENV_SIGNAL_DIR)
    if not signal_dir_value:
        return False
    if poll_seconds is None or timeout_seconds is None:
        config = QuiverConfig.from_env()
        if poll_seconds is None:
            poll_seconds = config.checkpoint_poll_seconds
        if timeout_seconds is None:
            timeout_seconds = config.checkpoint_timeout_seconds
    signal_path = Path(signal_dir_value) / CHECKPOINT_SIGNAL_FILE_NAME
    signal_path.parent.mkdir(parents=True, exist_ok=True)
    signal_path.write_text(str(os.getpid()) + "\n", encoding="utf-8")
    deadline = time.monotonic() + timeout_seconds
    while signal_path.exists():
        if time.monotonic() > deadline:
            signal_path.unlink(missing_ok=True)
            raise QuiverExperimentError(
                f"Checkpoint was not taken within {timeout_seconds} seconds. "
                "Check that the command runs under 'quiver exp run'."
            )
        time.sleep(poll_seconds)
    return True


class CheckpointSignalWatcher:
    """Background thread servicing checkpoint signals of one command."""

    def __init__(
        self,
        signal_dir: Path,
        callback: CheckpointCallback,
        poll_seconds: float = DEFAULT_CHECKPOINT_POLL_SECONDS,
    ) -> None:
        self._signal_path = signal_dir / CHECKPOINT_SIGNAL_FILE_NAME
        self._callback = callback
        self._poll_seconds = poll_seconds
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._watch, name="quiver-checkpoint", daemon=True)
        self._error: BaseException | None = None
        self.signal_count = 0

    def __enter__(self) -> "CheckpointSignalWatcher":
        self._signal_path.parent.mkdir(parents=True, exist_ok=True)
        self._signal_path.unlink(missing_ok=True)
        self._thread.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._stop_event.set()
        self._thread.join()
        # Signals raised right before exit are still serviced.
        self._service_signal()

    def raise_if_failed(self) -> None:
        """Re-raise the first error raised by the callback."""
        if self._error is not None:
            raise self._error

    def _watch(self) -> None:
        while not self._stop_event.wait(self._poll_seconds):
            self._service_signal()

    def _service_signal(self) -> None:
        if not self._signal_path.exists():
            return
        try:
            if self._error is None:
                self._callback()
                self.signal_count += 1
        except Exception as error:  # noqa: BLE001
            _LOGGER.error("checkpoint_failed", error=str(error))
            self._error = error
        finally:
            self._signal_path.unlink(missing_ok=True)
