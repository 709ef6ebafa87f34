"""Pytest-based tests for database backups, retention and restore."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

import profile_crm.backup.manager as manager_module
from profile_crm.backup.manager import BackupManager, format_backup_timestamp, parse_backup_timestamp
from profile_crm.database.models import NewContact, NewProfile
from profile_crm.database.operations import (
    RecordStore,
    StorageIOError,
    StoreClosedError,
    create_profile,
    log_contact,
)


def snapshot_rows(store: RecordStore) -> dict[str, list[dict[str, Any]]]:
    return {
        "profiles": store.query_all("SELECT * FROM profiles ORDER BY id"),
        "contacts": store.query_all("SELECT * FROM contacts ORDER BY id"),
    }


def populate(store: RecordStore) -> None:
    obrien = create_profile(store, NewProfile(
        first_name="Conan", last_name="O'Brien", company="Late Night's", status="Lead",
        notes="Said: 'call me back'"
    ))
    lovelace = create_profile(store, NewProfile(first_name="Ada", last_name="Lovelace", status="Customer"))
    log_contact(store, NewContact(profile_id=obrien, date="2025-01-01", type="Call", details="Intro; it's fine"))
    log_contact(store, NewContact(profile_id=lovelace, date="2025-01-02", type="Meeting", details="Demo", value_eur=2500.5))


def backup_names(directory: Path) -> list[str]:
    return sorted(path.name for path in directory.iterdir())


def make_backup_file(directory: Path, moment: datetime, extension: str = "db") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"crm_backup_{format_backup_timestamp(moment)}.{extension}"
    path.write_bytes(b"placeholder")
    return path


def test_timestamp_is_filename_safe_and_sortable() -> None:
    moment = datetime(2025, 1, 2, 3, 4, 5, 678900)
    timestamp = format_backup_timestamp(moment)

    assert timestamp == "2025-01-02T03-04-05-678900"
    assert ":" not in timestamp and "." not in timestamp
    assert parse_backup_timestamp(timestamp) == moment.replace(tzinfo=timezone.utc)
    assert format_backup_timestamp(datetime(2025, 1, 2, 3, 4, 5, 1)) < format_backup_timestamp(datetime(2025, 1, 2, 3, 4, 6))


@pytest.mark.parametrize("strategy, extension", [("copy", ".db"), ("dump", ".sql")])
def test_backup_restores_identical_rows(store: RecordStore, tmp_path: Path, strategy: str, extension: str) -> None:
    """A snapshot rebuilds the data as it was at backup time, independent of later changes."""
    populate(store)
    expected = snapshot_rows(store)

    manager = BackupManager(store, backup_directory=tmp_path / "backups", strategy=strategy)
    backup_file = manager.create_backup()

    assert backup_file.exists()
    assert backup_file.suffix == extension
    assert backup_file.name.startswith("crm_backup_")

    # Changes after the snapshot must not leak into it
    create_profile(store, NewProfile(first_name="Later", last_name="Addition", status="Lead"))
    store.close()

    restored_path = manager.restore_backup(backup_file, tmp_path / "restored" / "crm.db")
    with RecordStore(restored_path) as restored:
        assert snapshot_rows(restored) == expected


def test_dump_escapes_single_quotes(store: RecordStore, tmp_path: Path) -> None:
    populate(store)
    manager = BackupManager(store, backup_directory=tmp_path / "backups", strategy="dump")

    content = manager.create_backup().read_text(encoding="utf-8")

    assert "'O''Brien'" in content
    assert "'Late Night''s'" in content
    assert 'CREATE TABLE' in content


def test_copy_backup_is_self_contained(store: RecordStore, tmp_path: Path) -> None:
    populate(store)
    backup_dir = tmp_path / "backups"
    backup_file = BackupManager(store, backup_directory=backup_dir).create_backup()

    # No write-ahead log sidecars next to the snapshot
    assert backup_names(backup_dir) == [backup_file.name]


def test_create_backup_prunes_to_retention_count(store: RecordStore, tmp_path: Path) -> None:
    populate(store)
    backup_dir = tmp_path / "backups"
    manager = BackupManager(store, backup_directory=backup_dir, retention_count=5)

    created = [manager.create_backup() for _ in range(8)]

    assert backup_names(backup_dir) == sorted(path.name for path in created[-5:])


def test_prune_keeps_newest(store: RecordStore, tmp_path: Path) -> None:
    backup_dir = tmp_path / "backups"
    files = [make_backup_file(backup_dir, datetime(2025, 1, day, 12, 0, 0)) for day in range(1, 10)]
    unrelated = backup_dir / "notes.txt"
    unrelated.write_text("keep me")

    manager = BackupManager(store, backup_directory=backup_dir, retention_count=20)
    removed = manager.prune_old_backups(keep=5)

    assert removed == 4
    assert unrelated.exists()
    assert [path.exists() for path in files] == [False] * 4 + [True] * 5


def test_prune_orders_by_timestamp_across_strategies(store: RecordStore, tmp_path: Path) -> None:
    backup_dir = tmp_path / "backups"
    oldest = make_backup_file(backup_dir, datetime(2025, 1, 1), "sql")
    middle = make_backup_file(backup_dir, datetime(2025, 1, 2), "db")
    newest = make_backup_file(backup_dir, datetime(2025, 1, 3), "sql")

    BackupManager(store, backup_directory=backup_dir).prune_old_backups(keep=2)

    assert not oldest.exists()
    assert middle.exists() and newest.exists()


def test_prune_skips_files_that_cannot_be_deleted(
    store: RecordStore,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    log_messages: list[str]
) -> None:
    backup_dir = tmp_path / "backups"
    files = [make_backup_file(backup_dir, datetime(2025, 2, day)) for day in range(1, 8)]
    locked = files[0]

    original_unlink = Path.unlink

    def flaky_unlink(self: Path, *args: Any, **kwargs: Any) -> None:
        if self.name == locked.name:
            raise PermissionError("file is locked")
        original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)

    removed = BackupManager(store, backup_directory=backup_dir).prune_old_backups(keep=5)

    assert removed == 1
    assert locked.exists()
    assert not files[1].exists()
    assert all(path.exists() for path in files[2:])
    assert any("Failed to remove backup" in message for message in log_messages)


def test_prune_rejects_negative_keep(store: RecordStore, tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        BackupManager(store, backup_directory=tmp_path).prune_old_backups(keep=-1)


def test_failed_backup_leaves_no_file(
    store: RecordStore,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch
) -> None:
    backup_dir = tmp_path / "backups"
    manager = BackupManager(store, backup_directory=backup_dir)

    def partial_write(backup_file: Path) -> None:
        backup_file.write_bytes(b"SQLite format 3\x00 truncated")
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(manager, "_write_copy", partial_write)

    with pytest.raises(StorageIOError):
        manager.create_backup()
    assert backup_names(backup_dir) == []


def test_corrupt_backup_fails_validation_and_is_removed(
    store: RecordStore,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch
) -> None:
    backup_dir = tmp_path / "backups"

    def corrupt_copy(target_path: Path) -> None:
        target_path.write_bytes(b"this is not a database file at all" * 10)

    monkeypatch.setattr(store, "backup_to", corrupt_copy)

    with pytest.raises(StorageIOError):
        BackupManager(store, backup_directory=backup_dir).create_backup()
    assert backup_names(backup_dir) == []


def test_backup_of_closed_store_fails(store: RecordStore, tmp_path: Path) -> None:
    backup_dir = tmp_path / "backups"
    manager = BackupManager(store, backup_directory=backup_dir)
    store.close()

    with pytest.raises(StoreClosedError):
        manager.create_backup()
    assert backup_names(backup_dir) == []


def test_same_instant_backups_get_distinct_names(
    store: RecordStore,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch
) -> None:
    class FrozenDatetime(datetime):
        @classmethod
        def now(cls, tz: Any = None) -> "FrozenDatetime":
            return cls(2025, 6, 1, 12, 0, 0, 0, tzinfo=tz)

    monkeypatch.setattr(manager_module, "datetime", FrozenDatetime)
    manager = BackupManager(store, backup_directory=tmp_path / "backups")

    first = manager.create_backup()
    second = manager.create_backup()

    assert first.name == "crm_backup_2025-06-01T12-00-00-000000.db"
    assert second.name == "crm_backup_2025-06-01T12-00-00-000001.db"


def test_aware_moments_are_named_in_utc() -> None:
    eastern = timezone(timedelta(hours=-5))

    assert format_backup_timestamp(datetime(2025, 11, 2, 1, 5, tzinfo=eastern)) == "2025-11-02T06-05-00-000000"


def test_newest_backup_survives_daylight_saving_fall_back(
    store: RecordStore,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch
) -> None:
    """Two backups 25 minutes apart straddle the end of US daylight saving time.

    On the local wall clock the later one reads 01:05 and the earlier 01:40, so
    names built from local time would sort the newer backup first for pruning.
    """
    edt = timezone(timedelta(hours=-4))
    est = timezone(timedelta(hours=-5))
    readings = [
        (datetime(2025, 11, 2, 5, 40, tzinfo=timezone.utc), edt),
        (datetime(2025, 11, 2, 6, 5, tzinfo=timezone.utc), est),
    ]

    class FallBackClock(datetime):
        @classmethod
        def now(cls, tz: Any = None) -> datetime:
            instant, local_zone = readings.pop(0)
            if tz is None:
                return instant.astimezone(local_zone).replace(tzinfo=None)
            return instant.astimezone(tz)

    monkeypatch.setattr(manager_module, "datetime", FallBackClock)
    manager = BackupManager(store, backup_directory=tmp_path / "backups", retention_count=1)

    older = manager.create_backup()
    newer = manager.create_backup()

    assert not older.exists()
    assert newer.exists()
    assert newer.name == "crm_backup_2025-11-02T06-05-00-000000.db"


def test_list_backups_newest_first(store: RecordStore, tmp_path: Path) -> None:
    populate(store)
    manager = BackupManager(store, backup_directory=tmp_path / "backups")
    first = manager.create_backup()
    second = manager.create_backup()

    infos = manager.list_backups()

    assert [info.path for info in infos] == [second, first]
    assert infos[0].strategy == "copy"
    assert infos[0].size_bytes == second.stat().st_size
    assert len(infos[0].checksum) == 64


def test_restore_preserves_existing_target(store: RecordStore, tmp_path: Path) -> None:
    populate(store)
    manager = BackupManager(store, backup_directory=tmp_path / "backups")
    backup_file = manager.create_backup()

    target = tmp_path / "restore" / "crm.db"
    with RecordStore(target) as other:
        create_profile(other, NewProfile(first_name="Existing", last_name="Data", status="Lead"))

    manager.restore_backup(backup_file, target)

    saved = list(target.parent.glob("crm_pre_restore_*.db"))
    assert len(saved) == 1
    with RecordStore(target) as restored:
        names = [row["last_name"] for row in restored.query_all("SELECT last_name FROM profiles ORDER BY id")]
    assert names == ["O'Brien", "Lovelace"]


def test_restore_missing_backup_raises(store: RecordStore, tmp_path: Path) -> None:
    manager = BackupManager(store, backup_directory=tmp_path / "backups")

    with pytest.raises(FileNotFoundError):
        manager.restore_backup(tmp_path / "backups" / "missing.db", tmp_path / "target.db")


def test_invalid_manager_arguments(store: RecordStore, tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        BackupManager(store, backup_directory=tmp_path, strategy="zip")
    with pytest.raises(ValueError):
        BackupManager(store, backup_directory=tmp_path, retention_count=0)


def test_failed_replace_keeps_target_and_removes_staging(
    store: RecordStore,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch
) -> None:
    populate(store)
    manager = BackupManager(store, backup_directory=tmp_path / "backups")
    backup_file = manager.create_backup()
    target = tmp_path / "restore" / "crm.db"
    target.parent.mkdir()
    target.write_bytes(b"current contents")

    def failing_replace(source: Any, destination: Any) -> None:
        raise OSError(13, "Permission denied")

    monkeypatch.setattr(manager_module.os, "replace", failing_replace)

    with pytest.raises(StorageIOError):
        manager.restore_backup(backup_file, target)

    assert target.read_bytes() == b"current contents"
    assert not (target.parent / "crm.db.restoring").exists()


def test_staged_file_failing_integrity_never_replaces_target(
    store: RecordStore,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch
) -> None:
    populate(store)
    manager = BackupManager(store, backup_directory=tmp_path / "backups")
    backup_file = manager.create_backup()
    target = tmp_path / "restore" / "crm.db"
    target.parent.mkdir()
    target.write_bytes(b"current contents")

    checked_paths: list[str] = []
    original_check = manager._test_database_integrity

    def strict_check(db_path: Path) -> None:
        checked_paths.append(db_path.name)
        if db_path.name.endswith(".restoring"):
            raise sqlite3.DatabaseError("database disk image is malformed")
        original_check(db_path)

    monkeypatch.setattr(manager, "_test_database_integrity", strict_check)

    with pytest.raises(StorageIOError):
        manager.restore_backup(backup_file, target)

    assert "crm.db.restoring" in checked_paths
    assert target.read_bytes() == b"current contents"
    assert not (target.parent / "crm.db.restoring").exists()
