"""Live status multiplexer — per-connection fan-out of change-detecting pollers.

Every observer connection gets its own set of polling tasks, one per topic,
each on its own interval. A topic pushes an event only when its value
differs (structurally) from the last value pushed on that connection.
Failures go out as ``<topic>-error`` events, once per distinct error.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from loguru import logger

from arkbackup.core.archive_store import ArchiveQueryProtocol
from arkbackup.core.scheduler import BackupScheduler
from arkbackup.core.server_control import ServerController
from arkbackup.core.system_info import get_disk_space, get_version
from arkbackup.models.archive import Archive
from arkbackup.models.status import DiskSpace, SchedulerHealth
from arkbackup.streaming.events import CONNECTED, StreamEvent, error_event_name

SERVER_STATUS_EVENT = "server-status"
BACKUPS_EVENT = "backups"
BACKUP_HEALTH_EVENT = "backup-health"
DISK_SPACE_EVENT = "disk-space"
VERSION_EVENT = "version"

# Poll intervals in seconds
DEFAULT_INTERVALS: dict[str, float] = {
    SERVER_STATUS_EVENT: 0.5,
    BACKUPS_EVENT: 3.0,
    BACKUP_HEALTH_EVENT: 5.0,
    DISK_SPACE_EVENT: 10.0,
}

# Previous-value markers; never equal to a real value
_UNSET = object()
_FAILED = object()
# Queued by close() to end iteration
_CLOSED = object()


@dataclass(frozen=True)
class Topic:
    """One independently paced value source."""

    event: str
    interval: float
    fetch: Callable[[], Awaitable[Any]]
    serialize: Callable[[Any], Any]


class StreamConnection:
    """
    One observer's event stream.

    Iterate it (``async for event in conn``) to receive events; ``close()``
    cancels this connection's pollers and nothing else.
    """

    def __init__(
        self,
        connection_id: int,
        topics: list[Topic],
        version: Callable[[], str],
        on_close: Callable[[StreamConnection], None] | None = None,
    ) -> None:
        self.id = connection_id
        self._topics = topics
        self._version = version
        self._on_close = on_close
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def tasks(self) -> list[asyncio.Task[None]]:
        return list(self._tasks)

    def open(self) -> None:
        self._emit(CONNECTED, {"message": "Unified stream connected"})

        for topic in self._topics:
            task = asyncio.create_task(
                self._poll(topic), name=f"stream-{self.id}-{topic.event}"
            )
            self._tasks.append(task)

        # Version does not change while the process runs
        try:
            self._emit(VERSION_EVENT, {"server_version": self._version()})
        except Exception as e:
            logger.error(f"[Stream] Version info error: {e}")

    def _emit(self, event: str, data: Any) -> None:
        if not self._closed:
            self._queue.put_nowait(StreamEvent(event, data))

    async def _poll(self, topic: Topic) -> None:
        previous: Any = _UNSET
        last_error: str | None = None

        while True:
            try:
                value = await topic.fetch()
            except Exception as e:
                message = str(e) or type(e).__name__
                if message != last_error:
                    logger.error(f"[Stream] Error polling {topic.event}: {message}")
                    self._emit(error_event_name(topic.event), {"ok": False, "error": message})
                    last_error = message
                previous = _FAILED
            else:
                last_error = None
                if value != previous:
                    self._emit(topic.event, topic.serialize(value))
                previous = value

            await asyncio.sleep(topic.interval)

    async def next_event(self) -> StreamEvent:
        """Next event; raises StopAsyncIteration once the connection is closed."""
        return await self.__anext__()

    def __aiter__(self) -> StreamConnection:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is _CLOSED:
            raise StopAsyncIteration
        return event

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._on_close is not None:
            self._on_close(self)
        logger.info(f"[Stream] Client {self.id} disconnected")

    async def __aenter__(self) -> StreamConnection:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class StatusMultiplexer:
    """Hands out StreamConnections over the shared, read-only engine services."""

    def __init__(
        self,
        server: ServerController,
        archives: ArchiveQueryProtocol,
        scheduler: BackupScheduler,
        disk_path: Path,
        version: Callable[[], str] = get_version,
        intervals: dict[str, float] | None = None,
    ) -> None:
        self._server = server
        self._archives = archives
        self._scheduler = scheduler
        self._disk_path = Path(disk_path)
        self._version = version
        self._intervals = {**DEFAULT_INTERVALS, **(intervals or {})}
        self._connections: set[StreamConnection] = set()
        self._ids = itertools.count(1)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ── Topic sources ──

    async def _server_status(self) -> str:
        return await self._server.status()

    async def _backups(self) -> list[Archive]:
        return await asyncio.to_thread(self._archives.list)

    async def _health(self) -> SchedulerHealth:
        return self._scheduler.health()

    async def _disk_space(self) -> DiskSpace:
        return await asyncio.to_thread(get_disk_space, self._disk_path)

    def topics(self) -> list[Topic]:
        return [
            Topic(
                SERVER_STATUS_EVENT,
                self._intervals[SERVER_STATUS_EVENT],
                self._server_status,
                lambda status: {"ok": True, "status": status},
            ),
            Topic(
                BACKUPS_EVENT,
                self._intervals[BACKUPS_EVENT],
                self._backups,
                lambda archives: [a.to_dict() for a in archives],
            ),
            Topic(
                BACKUP_HEALTH_EVENT,
                self._intervals[BACKUP_HEALTH_EVENT],
                self._health,
                lambda health: health.to_dict(),
            ),
            Topic(
                DISK_SPACE_EVENT,
                self._intervals[DISK_SPACE_EVENT],
                self._disk_space,
                lambda disk: disk.to_dict(),
            ),
        ]

    # ── Connections ──

    def connect(self) -> StreamConnection:
        """Open a connection. Must be called from a running event loop."""
        conn = StreamConnection(
            next(self._ids), self.topics(), self._version, on_close=self._connections.discard
        )
        self._connections.add(conn)
        conn.open()
        logger.info(f"[Stream] Client {conn.id} connected ({len(self._connections)} active)")
        return conn

    async def close_all(self) -> None:
        """Close every open connection (shutdown)."""
        for conn in list(self._connections):
            await conn.close()
