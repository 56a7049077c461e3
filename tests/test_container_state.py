"""Tests for the container state tracker and the server controller."""

from __future__ import annotations

import asyncio

import pytest

from arkbackup.core.container_state import ContainerStateTracker, TransitionalState
from arkbackup.core.server_control import ServerController
from arkbackup.errors import ContainerNotFoundError, RuntimeClientError
from arkbackup.runtime.base import RuntimeClient


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock: FakeClock) -> ContainerStateTracker:
    return ContainerStateTracker(timeout_seconds=300, clock=clock)


class TestContainerStateTracker:
    def test_passthrough_when_idle(self, tracker: ContainerStateTracker) -> None:
        assert tracker.current() is None
        assert tracker.effective_status("running") == "running"
        assert tracker.effective_status("exited") == "exited"

    def test_starting_until_running(self, tracker: ContainerStateTracker) -> None:
        tracker.set_starting()
        assert tracker.effective_status("exited") == "starting"
        assert tracker.effective_status("restarting") == "starting"
        assert tracker.effective_status("running") == "running"
        assert tracker.current() is None

    def test_stopping_until_exited(self, tracker: ContainerStateTracker) -> None:
        tracker.set_stopping()
        assert tracker.effective_status("running") == "stopping"
        assert tracker.effective_status("exited") == "exited"
        assert tracker.current() is None
        assert tracker.effective_status("running") == "running"

    def test_expires_after_timeout(self, tracker: ContainerStateTracker, clock: FakeClock) -> None:
        tracker.set_starting()
        clock.now = 300.0
        assert tracker.current() == TransitionalState.STARTING
        clock.now = 301.0
        assert tracker.current() is None
        assert tracker.effective_status("exited") == "exited"

    def test_set_overwrites_and_restarts_clock(
        self, tracker: ContainerStateTracker, clock: FakeClock
    ) -> None:
        tracker.set_starting()
        clock.now = 200.0
        tracker.set_stopping()
        clock.now = 450.0
        assert tracker.current() == TransitionalState.STOPPING

    def test_clear(self, tracker: ContainerStateTracker) -> None:
        tracker.set_stopping()
        tracker.clear()
        assert tracker.current() is None
        tracker.clear()  # Clearing twice is harmless


class FakeRuntime(RuntimeClient):
    """In-memory runtime whose start/stop block until released."""

    def __init__(self, status: str | None = "exited") -> None:
        self.status = status
        self.release = asyncio.Event()
        self.fail_with: Exception | None = None
        self.stop_timeouts: list[int] = []

    @property
    def container_name(self) -> str:
        return "ark-test"

    async def inspect(self) -> str | None:
        return self.status

    async def start(self) -> str:
        await self.release.wait()
        if self.fail_with:
            raise self.fail_with
        self.status = "running"
        return self.status

    async def stop(self, timeout_seconds: int) -> str:
        self.stop_timeouts.append(timeout_seconds)
        await self.release.wait()
        self.status = "exited"
        return self.status


class TestServerController:
    @pytest.mark.asyncio
    async def test_reports_starting_while_in_flight(self) -> None:
        runtime = FakeRuntime("exited")
        server = ServerController(runtime, ContainerStateTracker())

        task = asyncio.create_task(server.start())
        await asyncio.sleep(0)
        assert await server.status() == "starting"

        runtime.release.set()
        assert await task == "running"
        assert await server.status() == "running"
        assert server.tracker.current() is None

    @pytest.mark.asyncio
    async def test_stop_passes_timeout(self) -> None:
        runtime = FakeRuntime("running")
        runtime.release.set()
        server = ServerController(runtime, ContainerStateTracker(), stop_timeout_seconds=45)
        assert await server.stop() == "exited"
        assert runtime.stop_timeouts == [45]

    @pytest.mark.asyncio
    async def test_failed_start_clears_state(self) -> None:
        runtime = FakeRuntime("exited")
        runtime.fail_with = RuntimeClientError("daemon unavailable")
        runtime.release.set()
        server = ServerController(runtime, ContainerStateTracker())

        with pytest.raises(RuntimeClientError):
            await server.start()
        assert server.tracker.current() is None
        assert await server.status() == "exited"

    @pytest.mark.asyncio
    async def test_missing_container(self) -> None:
        server = ServerController(FakeRuntime(None), ContainerStateTracker())
        with pytest.raises(ContainerNotFoundError, match="ark-test"):
            await server.status()
