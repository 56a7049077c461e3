"""Periodic create + prune loop with run-health tracking."""

from __future__ import annotations

import asyncio
import dataclasses
import time
from typing import Callable

from loguru import logger

from arkbackup.core.archive_store import ArchiveStore
from arkbackup.models.archive import Archive
from arkbackup.models.settings import BackupSettings, SettingsProvider
from arkbackup.models.status import SchedulerHealth

# Floor for the wait between iterations, whatever the configured interval
MINIMUM_LOOP_WAIT_SECONDS = 60.0


class BackupScheduler:
    """
    Runs the automated backup loop as an asyncio task.

    Each iteration reloads settings, sleeps ``max(interval, floor)``, then
    creates a backup and prunes to ``max_backups``. ``stop()`` only prevents
    the next backup from starting: the stop token is checked before the
    sleep, after it and right before the backup, never during one.

    Manual backups (:meth:`execute_and_prune`) update the same health
    record, so both paths show up in the one health surface.
    """

    def __init__(
        self,
        store: ArchiveStore,
        settings: SettingsProvider,
        operation_lock: asyncio.Lock | None = None,
        min_wait_seconds: float = MINIMUM_LOOP_WAIT_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._settings = settings
        self._operation_lock = operation_lock or asyncio.Lock()
        self._min_wait = min_wait_seconds
        self._clock = clock
        self._health = SchedulerHealth()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def operation_lock(self) -> asyncio.Lock:
        return self._operation_lock

    @property
    def is_active(self) -> bool:
        return self._health.active

    def health(self) -> SchedulerHealth:
        """Snapshot of the current health record."""
        return dataclasses.replace(self._health)

    # ── Lifecycle ──

    def start(self) -> asyncio.Task[None]:
        """Launch the loop. Must be called from a running event loop."""
        if self._task is not None and not self._task.done():
            raise RuntimeError("Backup scheduler is already running")
        self._stop_event = asyncio.Event()
        self._health.active = True
        self._task = asyncio.create_task(self._run_loop(), name="backup-scheduler")
        logger.info("[Scheduler] Backup scheduler started")
        return self._task

    def stop(self) -> None:
        """Ask the loop to exit at its next checkpoint. An in-flight backup completes."""
        self._stop_event.set()
        self._health.active = False
        logger.info("[Scheduler] Backup scheduler stopped")

    async def wait_stopped(self) -> None:
        if self._task is not None:
            await self._task

    async def _run_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                await self.run_iteration()
        finally:
            self._health.active = False

    # ── Iteration ──

    async def run_iteration(self) -> None:
        """One loop iteration. Failures are recorded and logged, never raised."""
        settings = await self._load_settings()
        wait = max(float(settings.backup_interval_seconds), self._min_wait)

        logger.info(f"[Scheduler] Next backup in {round(wait)}s")
        if await self._sleep(wait):
            return

        try:
            async with self._operation_lock:
                if self._stop_event.is_set():
                    return
                logger.info("[Scheduler] Creating scheduled backup...")
                await self._create_and_prune(settings.max_backups)
        except Exception as e:
            self._record_failure(e)
            logger.error(f"[Scheduler] Backup failed: {e}")
        else:
            self._record_success()
            logger.info("[Scheduler] Backup completed successfully")

    async def _load_settings(self) -> BackupSettings:
        try:
            return await asyncio.to_thread(self._settings.load_backup_settings)
        except Exception as e:
            logger.warning(f"[Scheduler] Failed to load settings, using defaults: {e}")
            return BackupSettings()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep, waking early on stop. Returns True if the scheduler was stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return self._stop_event.is_set()
        return True

    # ── Manual backups ──

    async def execute_and_prune(self, notes: str | None = None) -> Archive:
        """Create a backup now and prune. Failures are recorded and re-raised."""
        settings = await self._load_settings()
        logger.info("[Scheduler] Executing manual backup...")
        try:
            async with self._operation_lock:
                archive = await self._create_and_prune(settings.max_backups, notes)
        except Exception as e:
            self._record_failure(e)
            logger.error(f"[Scheduler] Manual backup failed: {e}")
            raise
        self._record_success()
        logger.info(f"[Scheduler] Manual backup completed: {archive.name}")
        return archive

    async def _create_and_prune(self, max_backups: int, notes: str | None = None) -> Archive:
        archive = await asyncio.to_thread(self._store.create, None, notes)
        await asyncio.to_thread(self._store.prune, max_backups)
        return archive

    # ── Health ──

    def _record_success(self) -> None:
        self._health.last_success_at = int(self._clock())
        self._health.last_error = None

    def _record_failure(self, error: BaseException) -> None:
        self._health.last_failure_at = int(self._clock())
        self._health.last_error = str(error) or type(error).__name__
