"""Archive models — one full backup plus its sidecar records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class VerificationStatus(StrEnum):
    """Outcome of the last integrity check of an archive."""

    VERIFIED = "verified"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"


@dataclass
class VerificationResult:
    """Contents of a ``<archive>.verify.json`` sidecar."""

    status: VerificationStatus = VerificationStatus.UNKNOWN
    file_count: int = 0
    checked_at: int | None = None  # Whole seconds since epoch
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationResult:
        try:
            status = VerificationStatus(data.get("status", "unknown"))
        except ValueError:
            status = VerificationStatus.UNKNOWN
        checked_at = data.get("checked_at", data.get("verification_time"))
        return cls(
            status=status,
            file_count=int(data.get("file_count", 0) or 0),
            checked_at=int(checked_at) if checked_at is not None else None,
            error=data.get("error"),
        )

    def to_sidecar(self) -> dict[str, Any]:
        """Serialize using the on-disk key names."""
        data: dict[str, Any] = {
            "status": str(self.status),
            "file_count": self.file_count,
            "verification_time": self.checked_at,
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = str(self.status)
        return data


@dataclass
class SaveInfo:
    """Game metadata derived from an archive's table of contents."""

    map_name: str = "Unknown"
    map_display_name: str = "Unknown"
    player_count: int = 0
    tribe_count: int = 0
    auto_save_count: int = 0
    main_save_size_bytes: int = 0
    total_file_count: int = 0
    suggested_tags: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SaveInfo:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        info = cls(**known)
        info.suggested_tags = list(info.suggested_tags or [])
        return info

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ArchiveMetadata:
    """Contents of a ``<archive>.meta.json`` sidecar."""

    name: str
    created_at: int
    notes: str | None = None
    tags: list[str] | None = None
    save_info: SaveInfo | None = None

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> ArchiveMetadata:
        save_info = data.get("save_info")
        tags = data.get("tags")
        return cls(
            name=data.get("name", name),
            created_at=int(data.get("created_at", 0) or 0),
            notes=data.get("notes") or None,
            tags=list(tags) if tags else None,
            save_info=SaveInfo.from_dict(save_info) if isinstance(save_info, dict) else None,
        )

    def to_sidecar(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "created_at": self.created_at}
        if self.notes:
            data["notes"] = self.notes
        if self.tags:
            data["tags"] = self.tags
        if self.save_info is not None:
            data["save_info"] = self.save_info.to_dict()
        return data


@dataclass
class Archive:
    """In-memory representation of a discovered backup archive."""

    name: str
    size_bytes: int = 0
    created_at: int = 0  # Whole seconds since epoch (file mtime)
    notes: str | None = None
    tags: list[str] | None = None
    verification: VerificationResult = field(default_factory=VerificationResult)
    save_info: SaveInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at,
            "notes": self.notes,
            "tags": self.tags,
            "verification": self.verification.to_dict(),
            "save_info": self.save_info.to_dict() if self.save_info else None,
        }
