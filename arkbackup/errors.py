"""Engine exceptions.

Background loops (scheduler, status stream) catch and record these;
foreground operations (delete, manual backup, restore) let them reach
the caller.
"""

from __future__ import annotations


class BackupManagerError(Exception):
    """Base class for all engine errors."""


class NotFoundError(BackupManagerError):
    """A requested archive or container does not exist."""


class ArchiveNotFoundError(NotFoundError):
    def __init__(self, name: str) -> None:
        super().__init__(f"backup not found: {name}")
        self.name = name


class ContainerNotFoundError(NotFoundError):
    def __init__(self, container_name: str) -> None:
        super().__init__(f"container '{container_name}' not found")
        self.container_name = container_name


class ValidationError(BackupManagerError):
    """Missing or invalid input, rejected before any I/O."""


class RuntimeClientError(BackupManagerError):
    """The container runtime could not be reached or refused a request."""
