"""Start, stop and status of the game server container."""

from __future__ import annotations

from loguru import logger

from arkbackup.core.container_state import ContainerStateTracker
from arkbackup.errors import ContainerNotFoundError
from arkbackup.runtime.base import RuntimeClient


class ServerController:
    """
    Combines the runtime client with the transitional-state overlay.

    ``start``/``stop`` publish ``starting``/``stopping`` while the runtime call
    is in flight, so status observers see the transition. The overlay is
    cleared when the call returns or fails.
    """

    def __init__(
        self,
        runtime: RuntimeClient,
        tracker: ContainerStateTracker,
        stop_timeout_seconds: int = 60,
    ) -> None:
        self._runtime = runtime
        self._tracker = tracker
        self._stop_timeout = stop_timeout_seconds

    @property
    def tracker(self) -> ContainerStateTracker:
        return self._tracker

    async def status(self) -> str:
        """Effective status; raises ContainerNotFoundError if the container is gone."""
        runtime_status = await self._runtime.inspect()
        if runtime_status is None:
            raise ContainerNotFoundError(self._runtime.container_name)
        return self._tracker.effective_status(runtime_status)

    async def start(self) -> str:
        self._tracker.set_starting()
        try:
            status = await self._runtime.start()
        finally:
            self._tracker.clear()
        logger.info(f"Server container started: {status}")
        return status

    async def stop(self) -> str:
        self._tracker.set_stopping()
        try:
            status = await self._runtime.stop(self._stop_timeout)
        finally:
            self._tracker.clear()
        logger.info(f"Server container stopped: {status}")
        return status
