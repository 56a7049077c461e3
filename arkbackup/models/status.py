"""Scheduler health, disk usage and restore progress payloads."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any


@dataclass
class SchedulerHealth:
    """Health of the automated backup loop. Not persisted."""

    active: bool = False
    last_success_at: int | None = None
    last_failure_at: int | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "scheduler_active": self.active,
            "last_successful_backup": self.last_success_at,
            "last_failed_backup": self.last_failure_at,
            "last_error": self.last_error,
        }


@dataclass
class DiskSpace:
    """Disk usage of the filesystem holding the backups."""

    total_bytes: int
    used_bytes: int
    available_bytes: int

    @property
    def used_percent(self) -> int:
        if self.total_bytes <= 0:
            return 0
        return round(self.used_bytes / self.total_bytes * 100)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["ok"] = True
        data["used_percent"] = self.used_percent
        return data


class RestoreStage(StrEnum):
    STARTING = "starting"
    SAFETY_BACKUP = "safety_backup"
    SKIPPING_SAFETY_BACKUP = "skipping_safety_backup"
    DELETING = "deleting"
    EXTRACTING = "extracting"
    COMPLETE = "complete"


@dataclass
class RestoreProgress:
    stage: RestoreStage
    percent: int
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"stage": str(self.stage), "percent": self.percent}
        if self.message is not None:
            data["message"] = self.message
        return data
