"""Centralized settings management for the profile CRM."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Final, Optional

from loguru import logger

from .logging_config import VALID_LOG_LEVELS, LoggingConfig


DEFAULT_CONFIG_FILE: Final[Path] = Path("config/crm.json")
BACKUP_STRATEGIES: Final[frozenset[str]] = frozenset({"copy", "dump"})

# Keys of the legacy {"database": {"backup": {...}}} layout
_LEGACY_BACKUP_KEYS: Final[Dict[str, str]] = {
    "enabled": "backup_enabled",
    "directory": "backup_directory",
    "onClose": "backup_on_close",
    "keepCount": "retention_count",
}


class ConfigurationError(Exception):
    """Raised when settings cannot be loaded, validated or saved."""
    pass


@dataclass(frozen=True)
class Settings:
    """Centralized application settings."""

    # Storage
    database_path: Path = Path("data/crm.db")

    # Backups
    backup_enabled: bool = True
    backup_directory: Path = Path("data/backups")
    retention_count: int = 5
    backup_on_close: bool = True
    backup_strategy: str = "copy"
    backup_prefix: str = "crm_backup"

    # Logging
    log_level: str = "INFO"
    log_file: Path = Path("logs/profile_crm.log")

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if self.retention_count < 1:
            raise ValueError("Retention count must be at least 1")
        if self.backup_strategy not in BACKUP_STRATEGIES:
            raise ValueError(
                f"Backup strategy must be one of {sorted(BACKUP_STRATEGIES)}, got '{self.backup_strategy}'"
            )
        if not self.backup_prefix.strip():
            raise ValueError("Backup prefix cannot be empty")
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Settings:
        """Create Settings from a parsed JSON object.

        Accepts the flat layout written by save_settings() as well as the
        nested {"database": {"backup": {...}}} layout.

        Raises:
            ValueError: If a value is invalid.
            TypeError: If an unknown key is present.
        """
        values: Dict[str, Any] = {key: value for key, value in data.items() if key != "database"}

        database_section: Any = data.get("database")
        legacy_backup: Dict[str, Any] = {}
        if isinstance(database_section, dict):
            legacy_backup = database_section.get("backup", {})
        for legacy_key, key in _LEGACY_BACKUP_KEYS.items():
            if legacy_key in legacy_backup:
                values.setdefault(key, legacy_backup[legacy_key])

        path_fields: set[str] = {"database_path", "backup_directory", "log_file"}
        known: set[str] = {f.name for f in fields(cls)}
        unknown: set[str] = set(values) - known
        if unknown:
            raise TypeError(f"Unknown settings keys: {sorted(unknown)}")

        for key in path_fields & set(values):
            values[key] = Path(values[key])
        if "retention_count" in values:
            values["retention_count"] = int(values["retention_count"])
        for key in ("backup_enabled", "backup_on_close"):
            if key in values and not isinstance(values[key], bool):
                raise ValueError(f"{key} must be true or false, got {values[key]!r}")

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable mapping of the settings."""
        data: Dict[str, Any] = asdict(self)
        for key, value in data.items():
            if isinstance(value, Path):
                data[key] = str(value)
        return data

    def logging_config(self) -> LoggingConfig:
        """Build the LoggingConfig matching these settings."""
        return LoggingConfig(
            log_file=self.log_file,
            log_level=self.log_level.upper(),
            console_level=self.log_level.upper()
        )

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with the given fields replaced (None values are ignored)."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


def load_settings(config_file: Optional[Path] = None) -> Settings:
    """Load application settings from a JSON configuration file.

    Args:
        config_file: Path to the JSON file. Defaults to config/crm.json.
            A missing file yields default settings.

    Returns:
        Loaded Settings instance.

    Raises:
        ConfigurationError: If the file is unreadable, malformed or invalid.
    """
    path: Path = config_file or DEFAULT_CONFIG_FILE
    if not path.exists():
        logger.debug(f"No configuration file at {path}, using defaults")
        return Settings()

    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Configuration root must be a JSON object")
        settings: Settings = Settings.from_dict(data)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Failed to load settings from {path}: {e}")
        raise ConfigurationError(f"Failed to load settings from {path}: {e}") from e

    logger.info(f"Settings loaded successfully from {path}")
    return settings


def save_settings(settings: Settings, config_file: Optional[Path] = None) -> Path:
    """Write settings to a JSON configuration file.

    Returns:
        The path written.

    Raises:
        ConfigurationError: If writing fails.
    """
    path: Path = config_file or DEFAULT_CONFIG_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(settings.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to save settings to {path}: {e}")
        raise ConfigurationError(f"Failed to save settings to {path}: {e}") from e

    logger.info(f"Settings saved successfully to {path}")
    return path
