"""Restore orchestrator — replace the live save directory with an archive's contents."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import AsyncIterator

from loguru import logger

from arkbackup.core.archive_store import ArchiveStore
from arkbackup.errors import NotFoundError
from arkbackup.models.settings import SettingsProvider
from arkbackup.models.status import RestoreProgress, RestoreStage
from arkbackup.streaming.events import DONE, ERROR, PROGRESS, StreamEvent

BACKUP_NOT_FOUND = "backup not found"
OPERATION_IN_PROGRESS = "another archive operation is in progress"


def _progress(stage: RestoreStage, percent: int, message: str | None = None) -> StreamEvent:
    return StreamEvent(PROGRESS, RestoreProgress(stage, percent, message).to_dict())


def _error(message: str) -> StreamEvent:
    return StreamEvent(ERROR, {"ok": False, "error": message})


def _remove_entry(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class RestoreOrchestrator:
    """
    Staged, non-transactional restore with progress events.

    Stages: validate → (safety backup) → delete live files → extract →
    complete. The live save directory is only touched once the safety
    backup (when enabled) exists. A failure while extracting can leave the
    save directory empty; the safety backup is then the way back.

    Shares the operation lock with the scheduler: a restore never runs
    while a backup is being written, and fails fast instead of waiting.
    """

    def __init__(
        self,
        store: ArchiveStore,
        settings: SettingsProvider,
        operation_lock: asyncio.Lock,
    ) -> None:
        self._store = store
        self._settings = settings
        self._operation_lock = operation_lock

    async def restore(self, name: str) -> AsyncIterator[StreamEvent]:
        """Yield ``progress`` events, then exactly one ``done`` or ``error``."""
        if not name:
            yield _error("backup_name is required")
            return

        if not await asyncio.to_thread(self._store.exists, name):
            logger.warning(f"[Restore] Backup not found: {name}")
            yield _error(BACKUP_NOT_FOUND)
            return

        if self._operation_lock.locked():
            logger.warning(f"[Restore] Refusing to restore {name}: {OPERATION_IN_PROGRESS}")
            yield _error(OPERATION_IN_PROGRESS)
            return

        async with self._operation_lock:
            try:
                async for event in self._run(name):
                    yield event
            except NotFoundError:
                logger.error(f"[Restore] Backup disappeared during restore: {name}")
                yield _error(BACKUP_NOT_FOUND)
            except FileNotFoundError as e:
                if self._store.exists(name):
                    logger.error(f"[Restore] Restore of {name} failed: {e}")
                    yield _error(f"restore failed: {e}")
                else:
                    logger.error(f"[Restore] Backup disappeared during restore: {name}")
                    yield _error(BACKUP_NOT_FOUND)
            except Exception as e:
                logger.error(f"[Restore] Restore of {name} failed: {e}")
                yield _error(f"restore failed: {e}")

    async def _run(self, name: str) -> AsyncIterator[StreamEvent]:
        logger.info(f"[Restore] Restoring {name}")
        yield _progress(RestoreStage.STARTING, 0)

        settings = await asyncio.to_thread(self._settings.load_backup_settings)
        safety_backup: str | None = None

        if settings.auto_safety_backup:
            yield _progress(
                RestoreStage.SAFETY_BACKUP, 5, "Creating pre-restore safety backup..."
            )
            try:
                archive = await asyncio.to_thread(self._store.create_safety_backup, name)
            except Exception as e:
                logger.error(f"[Restore] Safety backup failed, aborting restore: {e}")
                yield _error(f"Failed to create safety backup: {e}")
                return
            safety_backup = archive.name
            yield _progress(
                RestoreStage.SAFETY_BACKUP, 15, f"Safety backup created: {safety_backup}"
            )
        else:
            yield _progress(
                RestoreStage.SKIPPING_SAFETY_BACKUP,
                15,
                "Skipping safety backup (disabled in settings)",
            )

        save_dir = self._store.save_dir
        await asyncio.to_thread(save_dir.mkdir, parents=True, exist_ok=True)
        entries = await asyncio.to_thread(lambda: sorted(save_dir.iterdir()))
        total = len(entries)

        yield _progress(RestoreStage.DELETING, 20, f"Deleting {total} existing files...")
        for index, entry in enumerate(entries, start=1):
            await asyncio.to_thread(_remove_entry, entry)
            yield _progress(
                RestoreStage.DELETING,
                round(20 + index / total * 30),
                f"Deleted {index}/{total} files",
            )

        yield _progress(RestoreStage.EXTRACTING, 50, "Extracting backup archive...")
        await asyncio.to_thread(self._store.extract_to, name, save_dir)

        yield _progress(RestoreStage.COMPLETE, 100, "Restore complete!")
        yield StreamEvent(DONE, {"ok": True, "safety_backup": safety_backup})
        logger.info(f"[Restore] Restored {name} (safety backup: {safety_backup})")

    async def restore_collect(self, name: str) -> list[StreamEvent]:
        """Run a restore to completion and return every event."""
        return [event async for event in self.restore(name)]
