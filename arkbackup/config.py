"""Engine configuration — JSON-based, with file locking and batch update support."""

from __future__ import annotations

import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

from arkbackup.models.settings import (
    MINIMUM_BACKUP_INTERVAL_SECONDS,
    MINIMUM_BACKUP_RETENTION_COUNT,
    BackupSettings,
)

_instance: "Config | None" = None

# Default data directory
_DEFAULT_DATA_DIR = Path(os.environ.get("ARK_BACKUP_DATA_DIR", "/config"))


def get_config() -> Config:
    """Module-level factory — single global Config instance."""
    global _instance
    if _instance is None:
        _instance = Config()
    return _instance


def reset_config() -> None:
    """Reset the global config instance (for testing)."""
    global _instance
    _instance = None


class Config:
    """JSON-based engine configuration with file locking.

    Also serves as the settings provider for the scheduler and the restore
    orchestrator: :meth:`load_backup_settings` re-reads the file every call,
    so edits made by another process are picked up on the next iteration.
    """

    _DEFAULTS: dict[str, Any] = {
        "backup_dir": "/backups",
        "save_dir": "/save",
        "log_dir": "",
        "backup": {
            "interval_seconds": 1800,
            "max_backups": 10,
            "auto_safety_backup": True,
        },
        "container": {
            "name": "ark-asa",
            "docker_socket": "/var/run/docker.sock",
            "stop_timeout_seconds": 60,
        },
    }

    def __init__(self, data_dir: Path | None = None) -> None:
        self._data: dict[str, Any] = {}
        self._dir = data_dir or _DEFAULT_DATA_DIR
        self._path = self._dir / "config.json"
        self._lock = threading.Lock()
        self._defer_save = False
        self._load()

    def _load(self) -> None:
        """Load config from disk, merging with defaults."""
        self._data = json.loads(json.dumps(self._DEFAULTS))  # deep copy defaults
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as f:
                    user_data = json.load(f)
                self._deep_merge(self._data, user_data)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Failed to load config, using defaults: {e}")

        container_name = os.environ.get("ARK_BACKUP_CONTAINER_NAME")
        if container_name:
            self._data["container"]["name"] = container_name

    def reload(self) -> None:
        """Re-read the config file from disk."""
        with self._lock:
            self._load()

    def _deep_merge(self, base: dict, override: dict) -> None:
        """Recursively merge override into base."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _save(self) -> None:
        """Persist config to disk with file locking."""
        if self._defer_save:
            return
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(self._data, f, ensure_ascii=False, indent=2)
                tmp_path.replace(self._path)
            except OSError as e:
                logger.error(f"Failed to save config: {e}")
                if tmp_path.exists():
                    tmp_path.unlink(missing_ok=True)

    @contextmanager
    def batch_update(self) -> Iterator[None]:
        """Context manager for batching multiple config changes into a single write."""
        self._defer_save = True
        try:
            yield
        finally:
            self._defer_save = False
            self._save()

    # ── Generic access ──

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by dot-separated key path."""
        parts = key.split(".")
        node = self._data
        for part in parts:
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a config value by dot-separated key path."""
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            if part not in node or not isinstance(node[part], dict):
                node[part] = {}
            node = node[part]
        node[parts[-1]] = value
        self._save()

    # ── Backup settings (settings provider) ──

    def load_backup_settings(self) -> BackupSettings:
        """Reload from disk and return clamped backup settings."""
        self.reload()
        defaults = BackupSettings()
        interval = _as_int(self.get("backup.interval_seconds"), defaults.backup_interval_seconds)
        max_backups = _as_int(self.get("backup.max_backups"), defaults.max_backups)
        return BackupSettings(
            backup_interval_seconds=max(interval, MINIMUM_BACKUP_INTERVAL_SECONDS),
            max_backups=max(max_backups, MINIMUM_BACKUP_RETENTION_COUNT),
            auto_safety_backup=_as_bool(
                self.get("backup.auto_safety_backup"), defaults.auto_safety_backup
            ),
        )

    def update_backup_settings(self, settings: BackupSettings) -> None:
        """Validate and persist backup settings."""
        settings.validate()
        with self.batch_update():
            self.set("backup.interval_seconds", settings.backup_interval_seconds)
            self.set("backup.max_backups", settings.max_backups)
            self.set("backup.auto_safety_backup", settings.auto_safety_backup)
        logger.info(
            f"Backup settings updated: interval={settings.backup_interval_seconds}s, "
            f"max_backups={settings.max_backups}, "
            f"auto_safety_backup={settings.auto_safety_backup}"
        )

    # ── Typed properties ──

    @property
    def data_dir(self) -> Path:
        return self._dir

    @property
    def backup_dir(self) -> Path:
        return Path(self._data.get("backup_dir", "/backups"))

    @backup_dir.setter
    def backup_dir(self, value: Path) -> None:
        self.set("backup_dir", str(value))

    @property
    def save_dir(self) -> Path:
        return Path(self._data.get("save_dir", "/save"))

    @save_dir.setter
    def save_dir(self, value: Path) -> None:
        self.set("save_dir", str(value))

    @property
    def log_dir(self) -> Path | None:
        raw = self._data.get("log_dir", "")
        return Path(raw) if raw else None

    @property
    def backup_interval_seconds(self) -> int:
        return self.load_backup_settings().backup_interval_seconds

    @property
    def max_backups(self) -> int:
        return self.load_backup_settings().max_backups

    @property
    def auto_safety_backup(self) -> bool:
        return self.load_backup_settings().auto_safety_backup

    @property
    def container_name(self) -> str:
        return self.get("container.name", "ark-asa")

    @property
    def docker_socket(self) -> str:
        return self.get("container.docker_socket", "/var/run/docker.sock")

    @property
    def stop_timeout_seconds(self) -> int:
        return int(self.get("container.stop_timeout_seconds", 60))


def _as_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed



def _as_bool(value: Any, default: bool) -> bool:
    """Accept JSON booleans and hand-edited strings such as ``"false"`` or ``"no"``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "yes", "on", "1"):
            return True
        if text in ("false", "no", "off", "0"):
            return False
    return default
