"""Disk usage and engine version lookups."""

from __future__ import annotations

import shutil
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from arkbackup.models.status import DiskSpace

DISTRIBUTION_NAME = "ark-backup-engine"


def get_disk_space(path: Path) -> DiskSpace:
    """Usage of the filesystem containing ``path``."""
    usage = shutil.disk_usage(path)
    return DiskSpace(
        total_bytes=usage.total,
        used_bytes=usage.used,
        available_bytes=usage.free,
    )


def get_version() -> str:
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "unknown"
