"""Shared fixtures: a populated save directory and a store with a stepping clock."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from arkbackup.core.archive_store import ArchiveStore
from arkbackup.models.settings import BackupSettings


class StepClock:
    """Returns a new minute on every call so archive names never collide."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(minutes=1)
        return current


class StaticSettings:
    """Settings provider returning a fixed value."""

    def __init__(self, **kwargs) -> None:
        self.settings = BackupSettings(**kwargs)
        self.calls = 0

    def load_backup_settings(self) -> BackupSettings:
        self.calls += 1
        return self.settings


def write_save_tree(save_dir: Path) -> None:
    """Lay out a small dedicated-server save for The Island."""
    saved = save_dir / "TheIsland_WP" / "Saved"
    saved.mkdir(parents=True, exist_ok=True)
    (saved / "TheIsland_WP.ark").write_bytes(b"x" * 1024)
    (saved / "TheIsland_WP_20240115_120000.ark").write_bytes(b"y" * 512)
    (saved / "76561198000000001.arkprofile").write_bytes(b"player one")
    (saved / "76561198000000002.arkprofile").write_bytes(b"player two")
    (saved / "1234567890.arktribe").write_bytes(b"tribe")


def set_age(store: ArchiveStore, name: str, mtime: float) -> None:
    os.utime(store.path_for(name), (mtime, mtime))


@pytest.fixture
def save_dir(tmp_path: Path) -> Path:
    path = tmp_path / "save"
    write_save_tree(path)
    return path


@pytest.fixture
def store(tmp_path: Path, save_dir: Path) -> ArchiveStore:
    return ArchiveStore(tmp_path / "backups", save_dir, clock=StepClock())
