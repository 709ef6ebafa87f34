"""
Database Backup and Retention

Produces detached, timestamped snapshots of the CRM database, validates
them, keeps only the newest few, and rebuilds standalone databases from them.
"""

from __future__ import annotations

import hashlib
import os
import re
import shutil
import sqlite3
import time
from contextlib import closing, nullcontext
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import ContextManager, Final, List, Optional

from loguru import logger

from ..config.logging_config import LoggedOperation, StructuredLogger
from ..database.operations import DatabaseError, RecordStore, StorageIOError


DEFAULT_PREFIX: Final[str] = "crm_backup"
DEFAULT_RETENTION_COUNT: Final[int] = 5
STRATEGY_EXTENSIONS: Final[dict[str, str]] = {"copy": "db", "dump": "sql"}

_TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%dT%H-%M-%S-%f"
_TIMESTAMP_PATTERN: Final[str] = r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}"


def format_backup_timestamp(moment: datetime) -> str:
    """Render a moment as a sortable, filename-safe UTC timestamp.

    The ISO-8601 form is used with ':' and '.' replaced by '-', e.g.
    2026-10-19T14-03-22-123456. Aware moments are converted to UTC first;
    naive moments are taken to be UTC already.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.isoformat(timespec="microseconds").replace(":", "-").replace(".", "-")


def parse_backup_timestamp(timestamp: str) -> datetime:
    """Inverse of format_backup_timestamp; returns an aware UTC datetime."""
    return datetime.strptime(timestamp, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class BackupInfo:
    """Description of one snapshot file."""
    filename: str
    path: Path
    created_at: datetime
    strategy: str
    size_bytes: int
    checksum: str

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


class BackupManager:
    """
    Snapshot and retention manager for the CRM database.

    Features:
    - Physical copies through SQLite's online backup API, or logical SQL dumps
    - Integrity validation of every new snapshot
    - Count-based retention applied after each successful backup
    - Restore of a snapshot into a standalone database file
    """

    def __init__(
        self,
        store: RecordStore,
        backup_directory: Path = Path("data/backups"),
        retention_count: int = DEFAULT_RETENTION_COUNT,
        prefix: str = DEFAULT_PREFIX,
        strategy: str = "copy",
        validate: bool = True,
        structured_logger: Optional[StructuredLogger] = None
    ) -> None:
        """
        Initialize backup manager.

        Args:
            store: Record store whose database is backed up.
            backup_directory: Directory for backup storage.
            retention_count: Number of newest backups to keep.
            prefix: File name prefix identifying backups.
            strategy: "copy" for a database file, "dump" for an SQL script.
            validate: Whether to validate each new backup.
            structured_logger: Optional logger for timed operation records.
        """
        if strategy not in STRATEGY_EXTENSIONS:
            raise ValueError(f"Unknown backup strategy: {strategy}")
        if retention_count < 1:
            raise ValueError("Retention count must be at least 1")

        self.store = store
        self.backup_directory = Path(backup_directory)
        self.retention_count = retention_count
        self.prefix = prefix
        self.strategy = strategy
        self.validate = validate
        self.structured_logger = structured_logger
        self._name_pattern: re.Pattern[str] = re.compile(
            rf"^{re.escape(prefix)}_({_TIMESTAMP_PATTERN})\.(db|sql)$"
        )

        logger.debug(
            f"BackupManager initialized: directory={self.backup_directory}, "
            f"retention={self.retention_count}, strategy={self.strategy}"
        )

    def create_backup(self) -> Path:
        """
        Create a new snapshot, then prune old ones.

        Returns:
            Path to created backup file.

        Raises:
            StorageIOError: If the snapshot cannot be written or fails validation.
            StoreClosedError: If the store is not open.
        """
        context_manager: ContextManager[object] = (
            LoggedOperation(self.structured_logger, "database_backup", strategy=self.strategy)
            if self.structured_logger is not None
            else nullcontext()
        )

        with context_manager:
            try:
                self.backup_directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Cannot create backup directory {self.backup_directory}: {e}")
                raise StorageIOError(f"Cannot create backup directory {self.backup_directory}: {e}") from e

            backup_file: Path = self._next_backup_path()
            logger.info(f"Creating database backup: {backup_file.name}")

            try:
                if self.strategy == "copy":
                    self._write_copy(backup_file)
                else:
                    self._write_dump(backup_file)

                if self.validate:
                    self._validate_backup(backup_file)

            except (DatabaseError, OSError) as e:
                # Never leave a partial snapshot behind
                self._safe_file_delete(backup_file)
                logger.error(f"Backup creation failed: {e}")
                if self.structured_logger is not None:
                    self.structured_logger.log_backup_operation("create", backup_file, success=False, error=str(e))
                if isinstance(e, DatabaseError):
                    raise
                raise StorageIOError(f"Backup creation failed: {e}") from e

            logger.info(f"Database backup created successfully: {backup_file.name} ({backup_file.stat().st_size} bytes)")

            removed_count: int = self.prune_old_backups()
            if self.structured_logger is not None:
                self.structured_logger.log_backup_operation(
                    "create", backup_file, success=True, removed_count=removed_count
                )

            return backup_file

    def prune_old_backups(self, keep: Optional[int] = None) -> int:
        """
        Remove all but the newest `keep` backups.

        Failures to delete individual files are logged and skipped.

        Args:
            keep: Number of backups to retain (default: retention_count).

        Returns:
            Number of backups removed.
        """
        keep = self.retention_count if keep is None else keep
        if keep < 0:
            raise ValueError("Keep count must be non-negative")

        backup_files: List[Path] = self._backup_files()
        stale_files: List[Path] = backup_files[keep:]

        removed_count: int = 0
        for backup_file in stale_files:
            try:
                backup_file.unlink()
                removed_count += 1
                logger.info(f"Removed old backup: {backup_file.name}")
            except OSError as e:
                logger.error(f"Failed to remove backup {backup_file.name}: {e}")

        if stale_files:
            logger.info(f"Cleanup completed - removed {removed_count} of {len(stale_files)} old backups")
        return removed_count

    def list_backups(self) -> List[BackupInfo]:
        """
        Get information about existing backups, newest first.

        Returns:
            List of BackupInfo records.
        """
        infos: List[BackupInfo] = []
        for backup_file in self._backup_files():
            match = self._name_pattern.match(backup_file.name)
            if match is None:
                continue
            infos.append(BackupInfo(
                filename=backup_file.name,
                path=backup_file,
                created_at=parse_backup_timestamp(match.group(1)),
                strategy="copy" if match.group(2) == "db" else "dump",
                size_bytes=backup_file.stat().st_size,
                checksum=self._calculate_file_checksum(backup_file)
            ))
        return infos

    def restore_backup(self, backup_file: Path, target_path: Path) -> Path:
        """
        Rebuild a standalone database file from a snapshot.

        The target must not be open in a running store. An existing target is
        preserved as <stem>_pre_restore_<timestamp>.db next to it.

        Args:
            backup_file: Snapshot produced by create_backup().
            target_path: Database file to write.

        Returns:
            The restored database path.

        Raises:
            FileNotFoundError: If the backup does not exist.
            StorageIOError: If the backup is invalid or the restore fails.
        """
        backup_file = Path(backup_file)
        target_path = Path(target_path)
        if not backup_file.exists():
            raise FileNotFoundError(f"Backup file not found: {backup_file}")

        logger.info(f"Restoring database from backup: {backup_file.name}")
        self._validate_backup(backup_file)

        staging_path: Path = target_path.with_name(f"{target_path.name}.restoring")
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            if target_path.exists():
                timestamp: str = format_backup_timestamp(datetime.now(timezone.utc))
                saved_current: Path = target_path.with_name(f"{target_path.stem}_pre_restore_{timestamp}.db")
                shutil.copy2(target_path, saved_current)
                logger.info(f"Created backup of current database: {saved_current.name}")

            self._safe_file_delete(staging_path)
            if backup_file.suffix == ".sql":
                with closing(sqlite3.connect(str(staging_path))) as connection:
                    connection.executescript(backup_file.read_text(encoding="utf-8"))
            else:
                shutil.copy2(backup_file, staging_path)

            # The target is only replaced by a staged file that passed the checks
            self._test_database_integrity(staging_path)

            # A stale write-ahead log would be replayed onto the restored file
            for suffix in ("-wal", "-shm"):
                self._safe_file_delete(target_path.with_name(target_path.name + suffix))
            os.replace(staging_path, target_path)

        except (sqlite3.Error, OSError) as e:
            self._safe_file_delete(staging_path)
            logger.error(f"Database restore failed: {e}")
            if self.structured_logger is not None:
                self.structured_logger.log_backup_operation("restore", backup_file, success=False, error=str(e))
            raise StorageIOError(f"Database restore from {backup_file.name} failed: {e}") from e

        logger.info(f"Database restore completed successfully: {target_path}")
        if self.structured_logger is not None:
            self.structured_logger.log_backup_operation("restore", backup_file, success=True)
        return target_path

    def _next_backup_path(self) -> Path:
        """Return an unused backup path for the current time."""
        extension: str = STRATEGY_EXTENSIONS[self.strategy]
        moment: datetime = datetime.now(timezone.utc)
        while True:
            timestamp: str = format_backup_timestamp(moment)
            taken: bool = any(
                (self.backup_directory / f"{self.prefix}_{timestamp}.{ext}").exists()
                for ext in STRATEGY_EXTENSIONS.values()
            )
            if not taken:
                return self.backup_directory / f"{self.prefix}_{timestamp}.{extension}"
            moment += timedelta(microseconds=1)

    def _backup_files(self) -> List[Path]:
        """Return backup files in the directory, newest first by embedded timestamp."""
        if not self.backup_directory.is_dir():
            return []

        matched: List[tuple[str, Path]] = []
        for candidate in self.backup_directory.iterdir():
            match = self._name_pattern.match(candidate.name)
            if match is not None and candidate.is_file():
                matched.append((match.group(1), candidate))

        matched.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in matched]

    def _write_copy(self, backup_file: Path) -> None:
        self.store.backup_to(backup_file)

    def _write_dump(self, backup_file: Path) -> None:
        statements: List[str] = self.store.dump_statements()
        header: str = f"-- {self.prefix} logical dump {datetime.now(timezone.utc).isoformat(timespec='seconds')}"
        backup_file.write_text("\n".join([header, *statements]) + "\n", encoding="utf-8")

    def _validate_backup(self, backup_file: Path) -> None:
        """
        Validate backup integrity.

        A database copy is integrity-checked in place; a dump is replayed into
        an in-memory database which is then checked.
        """
        logger.debug(f"Validating backup: {backup_file.name}")

        try:
            if backup_file.suffix == ".sql":
                with closing(sqlite3.connect(":memory:")) as connection:
                    connection.executescript(backup_file.read_text(encoding="utf-8"))
                    self._check_connection(connection)
            else:
                self._test_database_integrity(backup_file)
        except (sqlite3.Error, OSError, UnicodeDecodeError) as e:
            logger.error(f"Backup validation failed: {e}")
            raise StorageIOError(f"Backup validation failed for {backup_file.name}: {e}") from e

        logger.debug(f"Backup validation successful: {backup_file.name}")

    def _test_database_integrity(self, db_path: Path) -> None:
        """Open a database file read-only and run the integrity checks on it."""
        with closing(sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)) as connection:
            self._check_connection(connection)

    def _check_connection(self, connection: sqlite3.Connection) -> None:
        cursor: sqlite3.Cursor = connection.cursor()

        cursor.execute("PRAGMA integrity_check")
        result = cursor.fetchone()
        if result is None or result[0] != "ok":
            raise sqlite3.DatabaseError(f"Database integrity check failed: {result[0] if result else 'no result'}")

        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name IN ('profiles', 'contacts')")
        tables = {row[0] for row in cursor.fetchall()}
        if tables != {"profiles", "contacts"}:
            raise sqlite3.DatabaseError(f"Backup is missing CRM tables, found {sorted(tables)}")

        for table_name in sorted(tables):
            cursor.execute(f'SELECT COUNT(*) FROM "{table_name}"')
            count = cursor.fetchone()[0]
            logger.debug(f"Table {table_name}: {count} rows")

    def _safe_file_delete(self, file_path: Path) -> None:
        """Delete a file, retrying briefly for transient locking issues."""
        if not file_path.exists():
            return

        max_retries = 3
        retry_delay = 0.1

        for attempt in range(max_retries):
            try:
                file_path.unlink()
                return
            except OSError as e:
                if attempt < max_retries - 1:
                    logger.debug(f"File deletion attempt {attempt + 1} failed, retrying: {e}")
                    time.sleep(retry_delay * (attempt + 1))
                else:
                    logger.warning(f"Failed to delete file after {max_retries} attempts: {file_path}")

    def _calculate_file_checksum(self, file_path: Path) -> str:
        """Calculate SHA-256 checksum of file."""
        sha256_hash = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                sha256_hash.update(chunk)
        return sha256_hash.hexdigest()
