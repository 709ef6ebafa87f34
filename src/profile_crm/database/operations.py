"""Database operations for the profile CRM."""

from __future__ import annotations

import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Any, Final, Mapping, Sequence, Union

from loguru import logger

from .models import Contact, NewContact, NewProfile, Profile, create_tables_sql

if TYPE_CHECKING:
    from ..config.logging_config import StructuredLogger


DATABASE_PATH: Final[Path] = Path("data/crm.db")
MEMORY_DATABASE: Final[str] = ":memory:"

Parameters = Union[Sequence[Any], Mapping[str, Any]]

# OperationalError messages that point at the statement rather than the file
_STATEMENT_ERROR_MARKERS: Final[tuple[str, ...]] = (
    "syntax error",
    "no such table",
    "no such column",
    "has no column",
    "incomplete input",
    "unrecognized token",
    "values for",
    "columns but",
    "no such function",
)

# Columns a caller may change through update_profile
_PROFILE_UPDATABLE_COLUMNS: Final[frozenset[str]] = frozenset({
    "first_name", "last_name", "company", "email", "phone",
    "address", "role", "status", "notes",
})


class DatabaseError(Exception):
    """Base exception for database operations."""
    pass


class ConstraintViolationError(DatabaseError):
    """Raised when a write breaks a uniqueness, foreign-key or check constraint."""
    pass


class SyntaxOrBindingError(DatabaseError):
    """Raised for malformed statements or mismatched parameter bindings."""
    pass


class StorageIOError(DatabaseError):
    """Raised when the database file cannot be read or written."""
    pass


class InitializationError(DatabaseError):
    """Raised when the store or its schema could not be set up."""
    pass


class StoreClosedError(DatabaseError):
    """Raised when the store is used before initialize() or after close()."""
    pass


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a write statement."""
    last_row_id: int | None
    rows_affected: int


def translate_sqlite_error(error: Exception, statement: str) -> DatabaseError:
    """Map a sqlite3 exception onto the store's error taxonomy.

    Args:
        error: Exception raised by the sqlite3 module.
        statement: The statement that was being executed.

    Returns:
        The matching DatabaseError subclass instance (not raised).
    """
    message: str = str(error)
    summary: str = " ".join(statement.split())[:120]

    if isinstance(error, sqlite3.IntegrityError):
        return ConstraintViolationError(f"Constraint violated: {message} [{summary}]")
    if isinstance(error, (sqlite3.ProgrammingError, sqlite3.InterfaceError, OverflowError)):
        return SyntaxOrBindingError(f"Invalid statement or bindings: {message} [{summary}]")
    if isinstance(error, sqlite3.OperationalError):
        lowered: str = message.lower()
        if any(marker in lowered for marker in _STATEMENT_ERROR_MARKERS):
            return SyntaxOrBindingError(f"Invalid statement: {message} [{summary}]")
    return StorageIOError(f"Storage failure: {message} [{summary}]")


class RecordStore:
    """The single read/write gateway to the CRM database.

    The store owns one SQLite connection in autocommit mode, so every
    execute() call is committed on its own. All statements are serialized
    through a re-entrant lock so commit boundaries never interleave.

    Usage:
        with RecordStore(Path("data/crm.db")) as store:
            result = store.execute("INSERT INTO products (name) VALUES (?)", ("Widget",))
            row = store.query_one("SELECT * FROM products WHERE id = ?", (result.last_row_id,))
    """

    def __init__(
        self,
        database_path: Path | str = DATABASE_PATH,
        structured_logger: StructuredLogger | None = None
    ) -> None:
        """Create an unopened store.

        Args:
            database_path: Path to the SQLite file, or ":memory:".
            structured_logger: Optional logger receiving per-write metrics.
        """
        self.database_path: Path | str = (
            database_path if str(database_path) == MEMORY_DATABASE else Path(database_path)
        )
        self.structured_logger: StructuredLogger | None = structured_logger
        self._connection: sqlite3.Connection | None = None
        self._initialized: bool = False
        self._lock: threading.RLock = threading.RLock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_memory(self) -> bool:
        return str(self.database_path) == MEMORY_DATABASE

    def initialize(self) -> None:
        """Open the connection and ensure the schema exists.

        Raises:
            InitializationError: If the file cannot be opened or the schema fails.
        """
        with self._lock:
            if self._initialized:
                return

            try:
                if isinstance(self.database_path, Path):
                    self.database_path.parent.mkdir(parents=True, exist_ok=True)
                connection: sqlite3.Connection = sqlite3.connect(
                    str(self.database_path),
                    isolation_level=None,
                    check_same_thread=False
                )
                connection.row_factory = sqlite3.Row
            except (sqlite3.Error, OSError) as e:
                logger.error(f"Failed to open database {self.database_path}: {e}")
                raise InitializationError(f"Cannot open database {self.database_path}: {e}") from e

            self._connection = connection
            try:
                self.ensure_schema()
            except DatabaseError as e:
                self._release_connection()
                logger.error(f"Failed to initialize database: {e}")
                raise InitializationError(f"Database initialization failed: {e}") from e

            self._initialized = True
            logger.info(f"Record store initialized at {self.database_path}")

    def ensure_schema(self) -> None:
        """Create tables and constraints if they do not exist.

        Safe to call repeatedly. Enables foreign-key enforcement for the
        connection and switches file databases to write-ahead logging.

        Raises:
            StoreClosedError: If no connection is open.
            DatabaseError: If any DDL statement fails.
        """
        with self._lock:
            connection: sqlite3.Connection = self._require_connection()
            statement: str = "PRAGMA foreign_keys = ON"
            try:
                connection.execute(statement)
                if not self.is_memory:
                    statement = "PRAGMA journal_mode = WAL"
                    mode_row: sqlite3.Row | None = connection.execute(statement).fetchone()
                    journal_mode: str = str(mode_row[0]) if mode_row is not None else "unknown"
                    if journal_mode.lower() != "wal":
                        logger.warning(f"Write-ahead logging unavailable, journal mode is {journal_mode}")

                for statement in create_tables_sql():
                    connection.execute(statement)
            except sqlite3.Error as e:
                raise translate_sqlite_error(e, statement) from e

            logger.debug("Database schema ensured")

    def close(self) -> None:
        """Release the connection. Further operations raise StoreClosedError."""
        with self._lock:
            if self._connection is None:
                return
            self._release_connection()
            logger.info(f"Record store closed: {self.database_path}")

    def __enter__(self) -> RecordStore:
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        _: TracebackType | None
    ) -> None:
        self.close()

    def execute(self, statement: str, parameters: Parameters = ()) -> ExecuteResult:
        """Run a write statement and commit it.

        Args:
            statement: SQL INSERT, UPDATE, DELETE or DDL statement.
            parameters: Positional or named bindings.

        Returns:
            ExecuteResult with the generated row id and affected row count.

        Raises:
            ConstraintViolationError: On uniqueness, foreign-key or check breaches.
            SyntaxOrBindingError: On malformed SQL or wrong bindings.
            StorageIOError: On file-level failures.
            StoreClosedError: If the store is not open.
        """
        with self._lock:
            connection: sqlite3.Connection = self._require_open()
            started: float = time.perf_counter()
            try:
                cursor: sqlite3.Cursor = connection.execute(statement, parameters)
            except (sqlite3.Error, OverflowError) as e:
                error: DatabaseError = translate_sqlite_error(e, statement)
                if isinstance(error, ConstraintViolationError):
                    logger.warning(str(error))
                else:
                    logger.error(str(error))
                raise error from e

            result = ExecuteResult(last_row_id=cursor.lastrowid, rows_affected=cursor.rowcount)
            cursor.close()

        elapsed_ms: float = (time.perf_counter() - started) * 1000
        logger.debug(f"Executed statement ({result.rows_affected} rows) in {elapsed_ms:.1f}ms")
        if self.structured_logger is not None:
            operation, table = _describe_statement(statement)
            self.structured_logger.log_database_operation(
                operation, table, affected_rows=result.rows_affected, execution_time_ms=elapsed_ms
            )
        return result

    def query_one(self, statement: str, parameters: Parameters = ()) -> dict[str, Any] | None:
        """Return the first matching row as a dict, or None when nothing matches."""
        with self._lock:
            connection: sqlite3.Connection = self._require_open()
            try:
                row: sqlite3.Row | None = connection.execute(statement, parameters).fetchone()
            except (sqlite3.Error, OverflowError) as e:
                error: DatabaseError = translate_sqlite_error(e, statement)
                logger.error(str(error))
                raise error from e
        return dict(row) if row is not None else None

    def query_all(self, statement: str, parameters: Parameters = ()) -> list[dict[str, Any]]:
        """Return all matching rows as dicts, in statement order."""
        with self._lock:
            connection: sqlite3.Connection = self._require_open()
            try:
                rows: list[sqlite3.Row] = connection.execute(statement, parameters).fetchall()
            except (sqlite3.Error, OverflowError) as e:
                error: DatabaseError = translate_sqlite_error(e, statement)
                logger.error(str(error))
                raise error from e
        return [dict(row) for row in rows]

    def backup_to(self, target_path: Path) -> None:
        """Copy the live database into target_path using the online backup API.

        Runs under the store lock, so the copy never observes a half-finished write.

        Raises:
            StorageIOError: If the copy fails.
        """
        with self._lock:
            connection: sqlite3.Connection = self._require_open()
            target: sqlite3.Connection | None = None
            try:
                target = sqlite3.connect(str(target_path))
                connection.backup(target)
                # The snapshot must be a single self-contained file
                target.execute("PRAGMA journal_mode = DELETE")
            except sqlite3.Error as e:
                raise StorageIOError(f"Backup copy to {target_path} failed: {e}") from e
            finally:
                if target is not None:
                    target.close()

    def dump_statements(self) -> list[str]:
        """Return a self-contained SQL dump (schema plus rows) of the database.

        Text literals are quoted with embedded single quotes doubled.
        """
        with self._lock:
            connection: sqlite3.Connection = self._require_open()
            try:
                return list(connection.iterdump())
            except sqlite3.Error as e:
                raise StorageIOError(f"Database dump failed: {e}") from e

    def _require_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StoreClosedError("Record store has no open connection")
        return self._connection

    def _require_open(self) -> sqlite3.Connection:
        if not self._initialized or self._connection is None:
            raise StoreClosedError("Record store is not initialized or already closed")
        return self._connection

    def _release_connection(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except sqlite3.Error as e:
                logger.warning(f"Error while closing database connection: {e}")
        self._connection = None
        self._initialized = False


def _describe_statement(statement: str) -> tuple[str, str]:
    """Return (operation, table) for a write statement, for structured logging."""
    tokens: list[str] = statement.replace("(", " ").split()
    if not tokens:
        return "UNKNOWN", "unknown"
    operation: str = tokens[0].upper()
    upper_tokens: list[str] = [token.upper() for token in tokens]
    for keyword in ("INTO", "FROM", "UPDATE", "TABLE", "EXISTS"):
        if keyword in upper_tokens:
            index: int = upper_tokens.index(keyword)
            if index + 1 < len(tokens):
                return operation, tokens[index + 1].strip('"')
    return operation, "unknown"


# =============================================================================
# PROFILE OPERATIONS
# =============================================================================

def create_profile(store: RecordStore, profile: NewProfile) -> int:
    """Insert a new profile.

    A missing company is stored as an empty string so it participates in the
    (first_name, last_name, company) uniqueness key.

    Args:
        store: Initialized record store.
        profile: Field values for the new profile.

    Returns:
        The database ID of the new profile.

    Raises:
        ValueError: If first_name, last_name or status is empty.
        ConstraintViolationError: If an identical profile already exists.
    """
    if not profile.first_name.strip():
        raise ValueError("First name cannot be empty")
    if not profile.last_name.strip():
        raise ValueError("Last name cannot be empty")
    if not profile.status.strip():
        raise ValueError("Status cannot be empty")

    result: ExecuteResult = store.execute(
        """INSERT INTO profiles
               (first_name, last_name, company, email, phone, address, role, status, notes)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            profile.first_name,
            profile.last_name,
            profile.company or "",
            profile.email,
            profile.phone,
            profile.address,
            profile.role,
            profile.status,
            profile.notes,
        )
    )
    if result.last_row_id is None:
        raise DatabaseError("Failed to get last row ID after insert")

    logger.info(f"Created profile ID {result.last_row_id}: {profile.first_name} {profile.last_name}")
    return result.last_row_id


def get_profile(store: RecordStore, profile_id: int) -> Profile | None:
    """Get profile by ID."""
    row: dict[str, Any] | None = store.query_one("SELECT * FROM profiles WHERE id = ?", (profile_id,))
    if row is None:
        logger.debug(f"get_profile: profile_id={profile_id} not found")
        return None
    return Profile.from_row(row)


def list_profiles(store: RecordStore) -> list[Profile]:
    """Return every profile, newest first."""
    rows: list[dict[str, Any]] = store.query_all(
        "SELECT * FROM profiles ORDER BY created_at DESC, id DESC"
    )
    return [Profile.from_row(row) for row in rows]


def search_profiles(store: RecordStore, term: str) -> list[Profile]:
    """Case-insensitive substring search over name, company, email and status.

    Args:
        store: Initialized record store.
        term: Text to look for; an empty term matches every profile.

    Returns:
        Matching profiles, newest first.
    """
    escaped: str = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern: str = f"%{escaped}%"
    rows: list[dict[str, Any]] = store.query_all(
        """SELECT * FROM profiles
           WHERE LOWER(first_name) LIKE ? ESCAPE '\\'
              OR LOWER(last_name) LIKE ? ESCAPE '\\'
              OR LOWER(company) LIKE ? ESCAPE '\\'
              OR LOWER(COALESCE(email, '')) LIKE ? ESCAPE '\\'
              OR LOWER(status) LIKE ? ESCAPE '\\'
           ORDER BY created_at DESC, id DESC""",
        (pattern, pattern, pattern, pattern, pattern)
    )
    logger.info(f"Found {len(rows)} profiles matching '{term}'")
    return [Profile.from_row(row) for row in rows]


def update_profile(store: RecordStore, profile_id: int, updates: Mapping[str, Any]) -> int:
    """Update a subset of a profile's fields.

    Args:
        store: Initialized record store.
        profile_id: ID of the profile to change.
        updates: Mapping of column name to new value.

    Returns:
        Number of rows affected; 0 when the profile does not exist.

    Raises:
        ValueError: If a key is not an updatable profile column.
        ConstraintViolationError: If the change collides with another profile.
    """
    if not updates:
        return 0

    # Column names are validated here and never come from user input directly
    invalid: set[str] = set(updates) - _PROFILE_UPDATABLE_COLUMNS
    if invalid:
        raise ValueError(f"Invalid profile fields: {sorted(invalid)}")

    values: dict[str, Any] = dict(updates)
    if "company" in values and values["company"] is None:
        values["company"] = ""

    set_clause: str = ", ".join(f"{column} = :{column}" for column in values)
    values["profile_id"] = profile_id

    result: ExecuteResult = store.execute(
        f"UPDATE profiles SET {set_clause} WHERE id = :profile_id",
        values
    )
    if result.rows_affected > 0:
        logger.info(f"Updated profile ID {profile_id}: {sorted(updates)}")
    else:
        logger.debug(f"update_profile: profile_id={profile_id} not found")
    return result.rows_affected


def delete_profile(store: RecordStore, profile_id: int) -> int:
    """Delete a profile; its contacts and scheduled contacts are removed with it.

    Returns:
        Number of profile rows deleted (0 or 1).
    """
    result: ExecuteResult = store.execute("DELETE FROM profiles WHERE id = ?", (profile_id,))
    if result.rows_affected > 0:
        logger.info(f"Deleted profile ID {profile_id}")
    return result.rows_affected


# =============================================================================
# CONTACT OPERATIONS
# =============================================================================

def log_contact(store: RecordStore, contact: NewContact) -> int:
    """Record an interaction with a profile.

    Args:
        store: Initialized record store.
        contact: The interaction; a missing value_eur is stored as 0.

    Returns:
        The database ID of the new contact.

    Raises:
        ConstraintViolationError: If the profile does not exist or the
            details are empty or longer than the allowed length.
    """
    result: ExecuteResult = store.execute(
        """INSERT INTO contacts (profile_id, date, type, details, value_eur)
           VALUES (?, ?, ?, ?, ?)""",
        (
            contact.profile_id,
            contact.date,
            contact.type,
            contact.details,
            contact.value_eur if contact.value_eur is not None else 0,
        )
    )
    if result.last_row_id is None:
        raise DatabaseError("Failed to get last row ID after insert")

    logger.info(f"Logged {contact.type} contact ID {result.last_row_id} for profile ID {contact.profile_id}")
    return result.last_row_id


def get_contact_history(store: RecordStore, profile_id: int, descending: bool = True) -> list[Contact]:
    """Return a profile's contacts ordered by date, then creation time.

    Args:
        store: Initialized record store.
        profile_id: Profile whose history is wanted.
        descending: Newest first when True, oldest first otherwise.

    Returns:
        List of Contact objects; empty when the profile has none.
    """
    direction: str = "DESC" if descending else "ASC"
    rows: list[dict[str, Any]] = store.query_all(
        f"""SELECT * FROM contacts
            WHERE profile_id = ?
            ORDER BY date {direction}, created_at {direction}, id {direction}""",
        (profile_id,)
    )
    return [Contact.from_row(row) for row in rows]


def clear_contacts(store: RecordStore) -> int:
    """Delete every logged contact. Returns the number of rows removed."""
    result: ExecuteResult = store.execute("DELETE FROM contacts")
    logger.info(f"Cleared {result.rows_affected} contacts")
    return result.rows_affected
