"""Container state tracker — overlay operator intent on runtime-reported state.

The container runtime only reports states such as ``running`` or ``exited``;
it has no notion of "starting" or "stopping". While a start/stop request is
in flight the tracker reports the transitional value instead, until the
runtime reaches the target state or the transitional value expires.
"""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Callable

from loguru import logger

TRANSITIONAL_STATE_TIMEOUT_SECONDS = 5 * 60


class TransitionalState(StrEnum):
    STARTING = "starting"
    STOPPING = "stopping"


# Runtime status that completes each transition
_TARGET_STATUS: dict[TransitionalState, str] = {
    TransitionalState.STARTING: "running",
    TransitionalState.STOPPING: "exited",
}


class ContainerStateTracker:
    """In-memory transitional state. One instance is shared by the whole engine."""

    def __init__(
        self,
        timeout_seconds: float = TRANSITIONAL_STATE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout_seconds
        self._clock = clock
        self._value: TransitionalState | None = None
        self._set_at: float | None = None

    def set_starting(self) -> None:
        self._set(TransitionalState.STARTING)

    def set_stopping(self) -> None:
        self._set(TransitionalState.STOPPING)

    def _set(self, value: TransitionalState) -> None:
        self._value = value
        self._set_at = self._clock()
        logger.info(f"[ServerState] State set to: {value}")

    def clear(self) -> None:
        previous = self._value
        self._value = None
        self._set_at = None
        if previous:
            logger.info(f"[ServerState] Cleared transitional state (was: {previous})")

    def current(self) -> TransitionalState | None:
        """Active transitional value, or None. Expired values are cleared here."""
        if self._value is not None and self._set_at is not None:
            elapsed = self._clock() - self._set_at
            if elapsed > self._timeout:
                logger.warning(
                    f"[ServerState] Transitional state '{self._value}' timed out "
                    f"after {round(elapsed)}s"
                )
                self.clear()
        return self._value

    def effective_status(self, runtime_status: str) -> str:
        """Status to show observers for the given runtime-reported status."""
        transitional = self.current()
        if transitional is None:
            return runtime_status

        if runtime_status == _TARGET_STATUS[transitional]:
            self.clear()
            return runtime_status

        return str(transitional)
