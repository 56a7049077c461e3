"""Engine context — service container for dependency injection."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from arkbackup.config import Config
from arkbackup.core.archive_store import ArchiveStore
from arkbackup.core.container_state import ContainerStateTracker
from arkbackup.core.restore import RestoreOrchestrator
from arkbackup.core.scheduler import BackupScheduler
from arkbackup.core.server_control import ServerController
from arkbackup.runtime.base import RuntimeClient
from arkbackup.runtime.docker import DockerRuntimeClient
from arkbackup.streaming.multiplexer import StatusMultiplexer


@dataclass
class AppContext:
    """
    Central service container.

    Every service is a single shared instance; the scheduler, the restore
    orchestrator and the status stream all see the same store, tracker and
    health record.
    """

    config: Config
    store: ArchiveStore
    tracker: ContainerStateTracker
    runtime: RuntimeClient
    server: ServerController
    scheduler: BackupScheduler
    restore: RestoreOrchestrator
    multiplexer: StatusMultiplexer

    async def aclose(self) -> None:
        """Stop background work and release resources."""
        self.scheduler.stop()
        await self.multiplexer.close_all()
        await self.runtime.close()


def create_context(config: Config, runtime: RuntimeClient | None = None) -> AppContext:
    """Wire all services and return an AppContext."""
    store = ArchiveStore(config.backup_dir, config.save_dir)
    tracker = ContainerStateTracker()
    if runtime is None:
        runtime = DockerRuntimeClient(config.container_name, config.docker_socket)
    server = ServerController(runtime, tracker, config.stop_timeout_seconds)

    # Backups and restores must not touch the save directory at the same time
    operation_lock = asyncio.Lock()
    scheduler = BackupScheduler(store, config, operation_lock)
    restore = RestoreOrchestrator(store, config, operation_lock)
    multiplexer = StatusMultiplexer(server, store, scheduler, config.backup_dir)

    return AppContext(
        config=config,
        store=store,
        tracker=tracker,
        runtime=runtime,
        server=server,
        scheduler=scheduler,
        restore=restore,
        multiplexer=multiplexer,
    )
