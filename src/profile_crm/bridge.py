"""
Request/response bridge between a UI layer and the persistence core.

A UI sends an operation name, a statement or payload, and bound parameters;
it always receives a BridgeResponse, never an exception.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Final, Mapping, Optional

from loguru import logger

from .backup.manager import BackupManager
from .database.duplicates import find_duplicate
from .database.operations import (
    ConstraintViolationError,
    DatabaseError,
    InitializationError,
    Parameters,
    RecordStore,
    StorageIOError,
    StoreClosedError,
    SyntaxOrBindingError,
)


# Error kinds reported to the UI
CONSTRAINT_VIOLATION: Final[str] = "constraint_violation"
SYNTAX_OR_BINDING: Final[str] = "syntax_or_binding"
IO_FAILURE: Final[str] = "io_failure"
INITIALIZATION_FAILURE: Final[str] = "initialization_failure"
STORE_CLOSED: Final[str] = "store_closed"
INVALID_REQUEST: Final[str] = "invalid_request"

_ERROR_KINDS: Final[tuple[tuple[type[DatabaseError], str], ...]] = (
    (ConstraintViolationError, CONSTRAINT_VIOLATION),
    (SyntaxOrBindingError, SYNTAX_OR_BINDING),
    (StorageIOError, IO_FAILURE),
    (InitializationError, INITIALIZATION_FAILURE),
    (StoreClosedError, STORE_CLOSED),
)

# Names used by the desktop renderer, mapped to canonical operations
_OPERATION_ALIASES: Final[Dict[str, str]] = {
    "execute": "insert",
    "run": "insert",
    "get": "queryOne",
    "all": "queryAll",
}


class InvalidRequestError(Exception):
    """Raised for requests the bridge cannot route."""
    pass


@dataclass(frozen=True)
class BridgeError:
    """Structured error returned to the UI."""
    kind: str
    message: str


@dataclass(frozen=True)
class BridgeResponse:
    """Result envelope for one bridge call."""
    ok: bool
    result: Any = None
    error: Optional[BridgeError] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RequestBridge:
    """Routes UI requests to the record store, duplicate detector and backups."""

    def __init__(self, store: RecordStore, backup_manager: Optional[BackupManager] = None) -> None:
        self.store = store
        self.backup_manager = backup_manager
        self._handlers: Dict[str, Callable[[Optional[str], Parameters, Mapping[str, Any]], Any]] = {
            "insert": self._insert,
            "queryOne": self._query_one,
            "queryAll": self._query_all,
            "findDuplicate": self._find_duplicate,
            "createBackup": self._create_backup,
        }

    @property
    def operations(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    def handle(
        self,
        operation: str,
        statement: Optional[str] = None,
        parameters: Optional[Parameters] = None,
        payload: Optional[Mapping[str, Any]] = None
    ) -> BridgeResponse:
        """Execute one request and wrap its outcome.

        Args:
            operation: One of insert, queryOne, queryAll, findDuplicate, createBackup.
            statement: SQL for the statement-based operations.
            parameters: Bound parameters for the statement.
            payload: Keyword data for findDuplicate.

        Returns:
            BridgeResponse with either a result or a structured error.
        """
        canonical: str = _OPERATION_ALIASES.get(operation, operation)
        handler = self._handlers.get(canonical)
        if handler is None:
            return self._failure(operation, INVALID_REQUEST, f"Unknown operation: {operation}")

        try:
            result: Any = handler(statement, parameters or (), payload or {})
        except InvalidRequestError as e:
            return self._failure(operation, INVALID_REQUEST, str(e))
        except DatabaseError as e:
            return self._failure(operation, _kind_of(e), str(e))

        logger.debug(f"Bridge operation {canonical} succeeded")
        return BridgeResponse(ok=True, result=result)

    def _insert(self, statement: Optional[str], parameters: Parameters, _: Mapping[str, Any]) -> Dict[str, Any]:
        result = self.store.execute(_require_statement(statement), parameters)
        return {"last_row_id": result.last_row_id, "rows_affected": result.rows_affected}

    def _query_one(self, statement: Optional[str], parameters: Parameters, _: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return self.store.query_one(_require_statement(statement), parameters)

    def _query_all(self, statement: Optional[str], parameters: Parameters, _: Mapping[str, Any]) -> list[Dict[str, Any]]:
        return self.store.query_all(_require_statement(statement), parameters)

    def _find_duplicate(self, _: Optional[str], __: Parameters, payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        first_name: Any = payload.get("first_name")
        last_name: Any = payload.get("last_name")
        if not isinstance(first_name, str) or not isinstance(last_name, str):
            raise InvalidRequestError("findDuplicate requires first_name and last_name strings")

        duplicate = find_duplicate(self.store, first_name, last_name, payload.get("company"))
        return asdict(duplicate) if duplicate is not None else None

    def _create_backup(self, _: Optional[str], __: Parameters, ___: Mapping[str, Any]) -> str:
        if self.backup_manager is None:
            raise InvalidRequestError("Backups are not enabled")
        return str(self.backup_manager.create_backup())

    def _failure(self, operation: str, kind: str, message: str) -> BridgeResponse:
        logger.error(f"Bridge operation {operation} failed ({kind}): {message}")
        return BridgeResponse(ok=False, error=BridgeError(kind=kind, message=message))


def _require_statement(statement: Optional[str]) -> str:
    if statement is None or not statement.strip():
        raise InvalidRequestError("A SQL statement is required")
    return statement


def _kind_of(error: DatabaseError) -> str:
    for error_type, kind in _ERROR_KINDS:
        if isinstance(error, error_type):
            return kind
    return IO_FAILURE
