"""Backup settings model."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Protocol

from arkbackup.errors import ValidationError

MINIMUM_BACKUP_INTERVAL_SECONDS = 60
MINIMUM_BACKUP_RETENTION_COUNT = 1


@dataclass(frozen=True)
class BackupSettings:
    """Scheduler/restore settings, reloaded on every scheduler iteration."""

    backup_interval_seconds: int = 1800
    max_backups: int = 10
    auto_safety_backup: bool = True

    def validate(self) -> None:
        if self.backup_interval_seconds < MINIMUM_BACKUP_INTERVAL_SECONDS:
            raise ValidationError(
                f"backup_interval_seconds must be at least {MINIMUM_BACKUP_INTERVAL_SECONDS} seconds"
            )
        if self.max_backups < MINIMUM_BACKUP_RETENTION_COUNT:
            raise ValidationError(
                f"max_backups must be at least {MINIMUM_BACKUP_RETENTION_COUNT}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SettingsProvider(Protocol):
    """Pull-only source of backup settings. Called once per scheduler iteration."""

    def load_backup_settings(self) -> BackupSettings: ...
