"""Pytest-based tests for configuration loading and logging setup."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from loguru import logger

from profile_crm.config.logging_config import LoggedOperation, LoggingConfig, setup_logging
from profile_crm.config.settings import ConfigurationError, Settings, load_settings, save_settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.database_path == Path("data/crm.db")
    assert settings.backup_enabled is True
    assert settings.backup_directory == Path("data/backups")
    assert settings.retention_count == 5
    assert settings.backup_on_close is True
    assert settings.backup_strategy == "copy"
    assert settings.backup_prefix == "crm_backup"


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    assert load_settings(tmp_path / "absent.json") == Settings()


def test_save_and_load(tmp_path: Path) -> None:
    config_file = tmp_path / "config" / "crm.json"
    settings = Settings(
        database_path=tmp_path / "crm.db",
        backup_directory=tmp_path / "snapshots",
        retention_count=3,
        backup_strategy="dump",
        log_level="DEBUG"
    )

    save_settings(settings, config_file)

    assert json.loads(config_file.read_text())["backup_strategy"] == "dump"
    assert load_settings(config_file) == settings


def test_nested_backup_section(tmp_path: Path) -> None:
    config_file = tmp_path / "crm.json"
    config_file.write_text(json.dumps({
        "database_path": "store/crm.db",
        "database": {"backup": {"enabled": False, "directory": "old/backups", "onClose": False, "keepCount": "7"}},
    }))

    settings = load_settings(config_file)

    assert settings.database_path == Path("store/crm.db")
    assert settings.backup_enabled is False
    assert settings.backup_directory == Path("old/backups")
    assert settings.backup_on_close is False
    assert settings.retention_count == 7


def test_flat_keys_win_over_nested_section() -> None:
    settings = Settings.from_dict({"retention_count": 2, "database": {"backup": {"keepCount": 9}}})

    assert settings.retention_count == 2


@pytest.mark.parametrize("content", [
    "{not json",
    "[1, 2, 3]",
    json.dumps({"retention_count": 0}),
    json.dumps({"backup_strategy": "tarball"}),
    json.dumps({"log_level": "LOUD"}),
    json.dumps({"unexpected": True}),
])
def test_invalid_files_raise_configuration_error(tmp_path: Path, content: str) -> None:
    config_file = tmp_path / "crm.json"
    config_file.write_text(content)

    with pytest.raises(ConfigurationError):
        load_settings(config_file)


def test_with_overrides_ignores_none(tmp_path: Path) -> None:
    settings = Settings().with_overrides(database_path=tmp_path / "other.db", retention_count=None)

    assert settings.database_path == tmp_path / "other.db"
    assert settings.retention_count == 5


def test_logging_config_follows_settings(tmp_path: Path) -> None:
    config = Settings(log_level="debug", log_file=tmp_path / "crm.log").logging_config()

    assert config.log_file == tmp_path / "crm.log"
    assert config.log_level == "DEBUG"
    assert config.console_level == "DEBUG"


def test_logging_config_validation() -> None:
    with pytest.raises(ValueError):
        LoggingConfig(log_level="NOISY")
    with pytest.raises(ValueError):
        LoggingConfig(retention_count=0)
    with pytest.raises(ValueError):
        LoggingConfig(slow_operation_threshold_seconds=0)


def test_setup_logging_writes_structured_records(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "crm.log"
    structured_logger = setup_logging(LoggingConfig(log_file=log_file, console_enabled=False))

    with LoggedOperation(structured_logger, "unit_test_operation", profile_id=42):
        structured_logger.log_database_operation("INSERT", "profiles", affected_rows=1)
    structured_logger.log_backup_operation("create", tmp_path / "backup.db", success=False, error="disk full")

    logger.complete()
    logger.remove()

    content = log_file.read_text(encoding="utf-8")
    assert "Operation started: unit_test_operation" in content
    assert "Operation completed: unit_test_operation" in content
    assert "Database operation: INSERT on profiles" in content
    assert "'profile_id': 42" in content

    error_content = log_file.with_suffix(".error.log").read_text(encoding="utf-8")
    assert "Backup operation failed: create" in error_content
    assert "disk full" in error_content


def test_logged_operation_records_failure(tmp_path: Path) -> None:
    log_file = tmp_path / "crm.log"
    structured_logger = setup_logging(LoggingConfig(log_file=log_file, console_enabled=False))

    with pytest.raises(RuntimeError):
        with LoggedOperation(structured_logger, "failing_operation"):
            raise RuntimeError("boom")

    logger.complete()
    logger.remove()

    content = log_file.read_text(encoding="utf-8")
    assert "Operation failed: failing_operation" in content
    assert "'error_message': 'boom'" in content


@pytest.mark.parametrize("data", [
    {"backup_enabled": "false"},
    {"backup_on_close": "false"},
    {"backup_on_close": 0},
    {"database": {"backup": {"enabled": "false"}}},
    {"database": {"backup": {"onClose": "no"}}},
])
def test_backup_flags_must_be_booleans(data: dict) -> None:
    with pytest.raises(ValueError):
        Settings.from_dict(data)


def test_string_backup_flag_in_file_is_rejected(tmp_path: Path) -> None:
    config_file = tmp_path / "crm.json"
    config_file.write_text(json.dumps({"database": {"backup": {"enabled": "false", "onClose": "false"}}}))

    with pytest.raises(ConfigurationError):
        load_settings(config_file)
