"""Archive store — full tar.gz snapshots with sidecar JSON metadata and verification."""

from __future__ import annotations

import json
import os
import tarfile
import time
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from loguru import logger

from arkbackup.core.save_info import extract_save_info
from arkbackup.errors import ArchiveNotFoundError, NotFoundError, ValidationError
from arkbackup.models.archive import (
    Archive,
    ArchiveMetadata,
    SaveInfo,
    VerificationResult,
    VerificationStatus,
)

ARCHIVE_SUFFIX = ".tar.gz"
META_SUFFIX = ".meta.json"
VERIFY_SUFFIX = ".verify.json"

DEFAULT_PREFIX = "saves"
SAFETY_PREFIX = "pre-restore"

# Errors that mean "this archive cannot be read", as opposed to programming errors
_READ_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error)


class ArchiveQueryProtocol(Protocol):
    """Read-only archive query interface used by the status stream."""

    def list(self) -> list[Archive]: ...

    def exists(self, name: str) -> bool: ...


def archive_name(prefix: str, when: datetime) -> str:
    """``saves-20240115123000.tar.gz``: minute granularity, seconds always ``00``."""
    return f"{prefix}-{when:%Y%m%d%H%M}00{ARCHIVE_SUFFIX}"


class ArchiveStore:
    """File-backed archive store. Also implements ArchiveQueryProtocol.

    Layout of ``backup_dir``::

        saves-20240115123000.tar.gz
        saves-20240115123000.tar.gz.meta.json     (optional)
        saves-20240115123000.tar.gz.verify.json   (optional)

    Sidecars are independent of the payload: an archive without any
    sidecar is valid and reports an ``unknown`` verification status.
    """

    def __init__(
        self,
        backup_dir: Path,
        save_dir: Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backup_dir = Path(backup_dir)
        self._save_dir = Path(save_dir)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def save_dir(self) -> Path:
        return self._save_dir

    def _ensure_backup_dir(self) -> Path:
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        return self._backup_dir

    # ── Paths ──

    def path_for(self, name: str) -> Path:
        """Resolve an archive name inside the backup directory."""
        if not name or "/" in name or "\\" in name or name in (".", "..") or "\x00" in name:
            raise ValidationError(f"Invalid backup name: {name!r}")
        return self._backup_dir / name

    def _meta_path(self, name: str) -> Path:
        return self.path_for(name + META_SUFFIX)

    def _verify_path(self, name: str) -> Path:
        return self.path_for(name + VERIFY_SUFFIX)

    def exists(self, name: str) -> bool:
        try:
            path = self.path_for(name)
        except ValidationError:
            return False
        return name.endswith(ARCHIVE_SUFFIX) and path.is_file()

    def _require(self, name: str) -> Path:
        if not self.exists(name):
            raise ArchiveNotFoundError(name)
        return self.path_for(name)

    # ── Creation ──

    def create(
        self,
        source_dir: Path | None = None,
        notes: str | None = None,
        prefix: str = DEFAULT_PREFIX,
        protect: str | None = None,
    ) -> Archive:
        """
        Snapshot ``source_dir`` (default: the save directory) into a new archive.

        Raises ValidationError instead of overwriting the archive named
        ``protect``.

        The archive is fully written before any sidecar is touched. Save-info
        extraction and the metadata write are best-effort: their failure is
        logged and the archive is still returned.
        """
        source = Path(source_dir) if source_dir is not None else self._save_dir
        if not source.is_dir():
            raise FileNotFoundError(f"Source directory not found: {source}")

        backup_dir = self._ensure_backup_dir()
        name = archive_name(prefix, self._clock())
        archive_path = backup_dir / name
        if name == protect:
            raise ValidationError(f"Backup {name} would overwrite itself; retry in a minute")
        if archive_path.exists():
            logger.warning(f"Backup {name} already exists and will be overwritten")

        self._write_archive(source, archive_path)

        save_info: SaveInfo | None = None
        try:
            save_info = extract_save_info(archive_path)
        except _READ_ERRORS as e:
            logger.warning(f"Failed to extract save info for {name}: {e}")

        metadata = ArchiveMetadata(
            name=name,
            created_at=int(time.time()),
            notes=notes or None,
            tags=[],
            save_info=save_info,
        )
        try:
            self._write_json(self._meta_path(name), metadata.to_sidecar())
        except OSError as e:
            logger.warning(f"Failed to write metadata for {name}: {e}")

        archive = self.get(name)
        logger.info(f"Created backup: {name} ({archive.size_bytes} bytes)")
        return archive

    def create_safety_backup(self, restoring: str | None = None) -> Archive:
        """Snapshot the live save directory before it is overwritten by a restore.

        ``restoring`` is the archive about to be extracted; it is never
        replaced by the snapshot.
        """
        return self.create(prefix=SAFETY_PREFIX, protect=restoring)

    def _write_archive(self, source: Path, archive_path: Path) -> None:
        """Write to a temporary file, then move into place."""
        tmp_path = archive_path.with_name(archive_path.name + ".part")
        try:
            with tarfile.open(tmp_path, "w:gz") as tf:
                tf.add(source, arcname=".")
            os.replace(tmp_path, archive_path)
        finally:
            tmp_path.unlink(missing_ok=True)

    # ── Listing ──

    def list(self) -> list[Archive]:
        """List all archives, newest first. Orphan sidecars are ignored."""
        backup_dir = self._ensure_backup_dir()
        entries: list[tuple[float, str, os.stat_result]] = []
        for path in backup_dir.glob(f"*{ARCHIVE_SUFFIX}"):
            if not path.is_file():
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                # Deleted between glob and stat
                continue
            entries.append((stat.st_mtime, path.name, stat))

        entries.sort(key=lambda e: (e[0], e[1]), reverse=True)
        return [self._build(name, stat) for _, name, stat in entries]

    def get(self, name: str) -> Archive:
        path = self._require(name)
        return self._build(name, path.stat())

    def _build(self, name: str, stat: os.stat_result) -> Archive:
        archive = Archive(
            name=name,
            size_bytes=stat.st_size,
            created_at=int(stat.st_mtime),
        )
        meta = self._load_metadata(name)
        if meta is not None:
            archive.notes = meta.notes
            archive.tags = meta.tags
            archive.save_info = meta.save_info
        verify = self._read_json(self._verify_path(name))
        if verify is not None:
            archive.verification = VerificationResult.from_dict(verify)
        return archive

    # ── Verification ──

    def verify(self, name: str) -> VerificationResult:
        """
        Walk the archive's table of contents and record the outcome.

        Read/parse failures are a ``failed`` result, not an exception. The
        result always overwrites the ``.verify.json`` sidecar.
        """
        path = self._require(name)
        checked_at = int(time.time())
        try:
            with tarfile.open(path, "r:gz") as tf:
                file_count = sum(1 for _ in tf)
            result = VerificationResult(
                status=VerificationStatus.VERIFIED,
                file_count=file_count,
                checked_at=checked_at,
            )
        except _READ_ERRORS as e:
            result = VerificationResult(
                status=VerificationStatus.FAILED,
                file_count=0,
                checked_at=checked_at,
                error=str(e) or type(e).__name__,
            )
            logger.warning(f"Verification failed for {name}: {result.error}")

        self._write_json(self._verify_path(name), result.to_sidecar())
        logger.info(f"Verified {name}: {result.status} ({result.file_count} entries)")
        return result

    # ── Metadata ──

    def update_metadata(self, name: str, notes: str | None, tags: Iterable[str] | None) -> None:
        """Replace notes/tags. Clearing both removes the metadata sidecar."""
        self._require(name)
        clean_tags = _normalize_tags(tags or [])
        meta_path = self._meta_path(name)

        if not notes and not clean_tags:
            meta_path.unlink(missing_ok=True)
            logger.debug(f"Cleared metadata for {name}")
            return

        existing = self._load_metadata(name)
        metadata = ArchiveMetadata(
            name=name,
            created_at=existing.created_at if existing else int(time.time()),
            notes=notes or None,
            tags=clean_tags or None,
            save_info=existing.save_info if existing else None,
        )
        self._write_json(meta_path, metadata.to_sidecar())
        logger.debug(f"Updated metadata for {name}")

    def _load_metadata(self, name: str) -> ArchiveMetadata | None:
        data = self._read_json(self._meta_path(name))
        if data is None:
            return None
        return ArchiveMetadata.from_dict(name, data)

    # ── Deletion / retention ──

    def delete(self, name: str) -> None:
        """Delete an archive and its sidecars. A missing archive is an error."""
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise ArchiveNotFoundError(name) from e

        self._meta_path(name).unlink(missing_ok=True)
        self._verify_path(name).unlink(missing_ok=True)
        logger.info(f"Deleted backup: {name}")

    def prune(self, max_count: int) -> list[str]:
        """Delete the oldest archives beyond ``max_count``. Best-effort per archive."""
        if max_count < 0:
            raise ValidationError("max_count must not be negative")

        archives = self.list()
        deleted: list[str] = []
        for archive in archives[max_count:]:  # newest-first, so the tail is the oldest
            try:
                self.delete(archive.name)
                deleted.append(archive.name)
            except (OSError, NotFoundError) as e:
                logger.warning(f"Failed to prune backup {archive.name}: {e}")

        if deleted:
            logger.info(f"Pruned {len(deleted)} old backup(s), keeping {max_count}")
        return deleted

    # ── Extraction ──

    def extract_to(self, name: str, target_dir: Path) -> None:
        """Extract the whole archive into ``target_dir``."""
        path = self._require(name)
        target = Path(target_dir)
        target.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, "r:gz") as tf:
            tf.extractall(target, filter="data")
        logger.info(f"Extracted {name} into {target}")

    # ── JSON helpers ──

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any] | None:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Skipping malformed sidecar {path.name}: {e}")
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _write_json(path: Path, data: dict[str, Any]) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)


def _normalize_tags(tags: Iterable[str]) -> list[str]:
    """Strip, drop empties and de-duplicate while keeping order."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result
