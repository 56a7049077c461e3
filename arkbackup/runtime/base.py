"""Abstract base class for container runtime clients."""

from __future__ import annotations

from abc import ABC, abstractmethod


class RuntimeClient(ABC):
    """The three operations the engine needs from a container runtime.

    Status values are opaque strings (``running``, ``exited`` …) passed
    through verbatim.
    """

    @property
    @abstractmethod
    def container_name(self) -> str:
        """Name or ID of the managed container."""
        ...

    @abstractmethod
    async def inspect(self) -> str | None:
        """Current status, or None if the container does not exist."""
        ...

    @abstractmethod
    async def start(self) -> str:
        """Start the container and return its status afterwards."""
        ...

    @abstractmethod
    async def stop(self, timeout_seconds: int) -> str:
        """Stop the container (SIGKILL after ``timeout_seconds``) and return its status."""
        ...

    async def close(self) -> None:
        """Release transport resources. Optional."""
        return None
