"""Tests for the RestoreOrchestrator."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from arkbackup.core.archive_store import ArchiveStore
from arkbackup.core.restore import (
    BACKUP_NOT_FOUND,
    OPERATION_IN_PROGRESS,
    RestoreOrchestrator,
)
from arkbackup.streaming.events import DONE, ERROR, PROGRESS, StreamEvent
from conftest import StaticSettings, StepClock


def _snapshot(root: Path) -> dict[str, bytes]:
    return {
        str(p.relative_to(root)): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()
    }


def _stages(events: list[StreamEvent]) -> list[tuple[str, int]]:
    return [(e.data["stage"], e.data["percent"]) for e in events if e.event == PROGRESS]


def _orchestrator(store: ArchiveStore, safety: bool = True) -> RestoreOrchestrator:
    return RestoreOrchestrator(store, StaticSettings(auto_safety_backup=safety), asyncio.Lock())


class TestRestoreValidation:
    @pytest.mark.asyncio
    async def test_missing_archive(self, store: ArchiveStore, save_dir: Path) -> None:
        before = _snapshot(save_dir)
        events = await _orchestrator(store).restore_collect("saves-20990101000000.tar.gz")

        assert len(events) == 1
        assert events[0].event == ERROR
        assert events[0].data == {"ok": False, "error": BACKUP_NOT_FOUND}
        assert _snapshot(save_dir) == before
        assert store.list() == []

    @pytest.mark.asyncio
    async def test_empty_name(self, store: ArchiveStore) -> None:
        events = await _orchestrator(store).restore_collect("")
        assert [e.event for e in events] == [ERROR]

    @pytest.mark.asyncio
    async def test_traversal_name_not_found(self, store: ArchiveStore) -> None:
        events = await _orchestrator(store).restore_collect("../../etc/passwd")
        assert events[0].data["error"] == BACKUP_NOT_FOUND

    @pytest.mark.asyncio
    async def test_busy_lock_fails_fast(self, store: ArchiveStore, save_dir: Path) -> None:
        name = store.create().name
        lock = asyncio.Lock()
        orchestrator = RestoreOrchestrator(store, StaticSettings(), lock)
        before = _snapshot(save_dir)

        await lock.acquire()
        try:
            events = await orchestrator.restore_collect(name)
        finally:
            lock.release()

        assert [e.event for e in events] == [ERROR]
        assert events[0].data["error"] == OPERATION_IN_PROGRESS
        assert _snapshot(save_dir) == before


class TestRestoreRun:
    @pytest.mark.asyncio
    async def test_restores_archive_contents(self, store: ArchiveStore, save_dir: Path) -> None:
        name = store.create().name
        original = _snapshot(save_dir)

        # Diverge the live save from the archive
        saved = save_dir / "TheIsland_WP" / "Saved"
        (saved / "TheIsland_WP.ark").write_bytes(b"newer world state")
        (saved / "99.arkprofile").write_bytes(b"new player")
        (save_dir / "stray.txt").write_text("junk", encoding="utf-8")

        events = await _orchestrator(store).restore_collect(name)

        assert events[-1].event == DONE
        assert _snapshot(save_dir) == original

        safety = events[-1].data["safety_backup"]
        assert events[-1].data["ok"] is True
        assert safety.startswith("pre-restore-")
        assert store.exists(safety)

    @pytest.mark.asyncio
    async def test_safety_backup_holds_pre_restore_state(
        self, store: ArchiveStore, save_dir: Path, tmp_path: Path
    ) -> None:
        name = store.create().name
        (save_dir / "TheIsland_WP" / "Saved" / "TheIsland_WP.ark").write_bytes(b"state B")
        state_b = _snapshot(save_dir)

        events = await _orchestrator(store).restore_collect(name)
        safety = events[-1].data["safety_backup"]

        check = tmp_path / "check"
        store.extract_to(safety, check)
        assert _snapshot(check) == state_b

    @pytest.mark.asyncio
    async def test_stage_sequence(self, store: ArchiveStore, save_dir: Path) -> None:
        name = store.create().name
        (save_dir / "a.txt").write_text("a", encoding="utf-8")
        (save_dir / "b.txt").write_text("b", encoding="utf-8")
        # save_dir now holds three top-level entries

        events = await _orchestrator(store).restore_collect(name)

        assert _stages(events) == [
            ("starting", 0),
            ("safety_backup", 5),
            ("safety_backup", 15),
            ("deleting", 20),
            ("deleting", 30),
            ("deleting", 40),
            ("deleting", 50),
            ("extracting", 50),
            ("complete", 100),
        ]
        percents = [p for _, p in _stages(events)]
        assert percents == sorted(percents)
        assert [e.event for e in events].count(DONE) == 1
        assert ERROR not in [e.event for e in events]

    @pytest.mark.asyncio
    async def test_without_safety_backup(self, store: ArchiveStore) -> None:
        name = store.create().name
        events = await _orchestrator(store, safety=False).restore_collect(name)

        stages = [s for s, _ in _stages(events)]
        assert "skipping_safety_backup" in stages
        assert "safety_backup" not in stages
        assert events[-1].data == {"ok": True, "safety_backup": None}
        assert [a.name for a in store.list()] == [name]

    @pytest.mark.asyncio
    async def test_empty_save_dir(self, store: ArchiveStore, save_dir: Path) -> None:
        name = store.create().name
        original = _snapshot(save_dir)
        for entry in list(save_dir.iterdir()):
            shutil.rmtree(entry)

        events = await _orchestrator(store, safety=False).restore_collect(name)
        assert ("deleting", 20) in _stages(events)
        assert events[-1].event == DONE
        assert _snapshot(save_dir) == original

    @pytest.mark.asyncio
    async def test_safety_failure_leaves_save_untouched(
        self, store: ArchiveStore, save_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        name = store.create().name
        (save_dir / "live.txt").write_text("live", encoding="utf-8")
        before = _snapshot(save_dir)

        def fail(*args) -> None:
            raise OSError("No space left on device")

        monkeypatch.setattr(store, "create_safety_backup", fail)
        events = await _orchestrator(store).restore_collect(name)

        assert events[-1].event == ERROR
        assert events[-1].data["error"].startswith("Failed to create safety backup")
        assert "No space left on device" in events[-1].data["error"]
        assert "deleting" not in [s for s, _ in _stages(events)]
        assert _snapshot(save_dir) == before

    @pytest.mark.asyncio
    async def test_extract_failure_reported(
        self, store: ArchiveStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        name = store.create().name

        def fail(*args) -> None:
            raise OSError("boom")

        monkeypatch.setattr(store, "extract_to", fail)
        events = await _orchestrator(store, safety=False).restore_collect(name)

        assert events[-1].event == ERROR
        assert events[-1].data == {"ok": False, "error": "restore failed: boom"}
        assert DONE not in [e.event for e in events]

    @pytest.mark.asyncio
    async def test_lock_released_afterwards(self, store: ArchiveStore) -> None:
        name = store.create().name
        lock = asyncio.Lock()
        orchestrator = RestoreOrchestrator(store, StaticSettings(auto_safety_backup=False), lock)
        await orchestrator.restore_collect(name)
        assert not lock.locked()
        events = await orchestrator.restore_collect(name)
        assert events[-1].event == DONE

    @pytest.mark.asyncio
    async def test_archive_vanishes_mid_run(
        self, store: ArchiveStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        name = store.create().name
        original = store.extract_to

        def vanish(archive: str, target: Path) -> None:
            store.delete(archive)
            original(archive, target)

        monkeypatch.setattr(store, "extract_to", vanish)
        events = await _orchestrator(store, safety=False).restore_collect(name)
        assert events[-1].data == {"ok": False, "error": BACKUP_NOT_FOUND}

    @pytest.mark.asyncio
    async def test_rollback_within_same_minute_keeps_target(
        self, tmp_path: Path, save_dir: Path
    ) -> None:
        moment = StepClock()()
        store = ArchiveStore(tmp_path / "backups", save_dir, clock=lambda: moment)
        marker = save_dir / "marker.txt"

        marker.write_text("GOOD", encoding="utf-8")
        good = store.create().name
        marker.write_text("BAD", encoding="utf-8")

        events = await _orchestrator(store).restore_collect(good)
        rollback = events[-1].data["safety_backup"]
        assert marker.read_text(encoding="utf-8") == "GOOD"

        # The rollback target carries the name the next safety backup would get
        marker.write_text("LIVE", encoding="utf-8")
        events = await _orchestrator(store).restore_collect(rollback)

        assert events[-1].event == ERROR
        assert events[-1].data["error"].startswith("Failed to create safety backup")
        assert "deleting" not in [s for s, _ in _stages(events)]
        assert marker.read_text(encoding="utf-8") == "LIVE"

        check = tmp_path / "check"
        store.extract_to(rollback, check)
        assert (check / "marker.txt").read_text(encoding="utf-8") == "BAD"
