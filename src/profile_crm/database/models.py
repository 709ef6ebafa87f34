"""Database models for the profile CRM."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Mapping


DETAILS_MAX_LENGTH: Final[int] = 300


@dataclass(frozen=True)
class Profile:
    """Model representing a stored contact profile.

    Immutable dataclass to prevent accidental mutation of database records.
    """
    id: int
    first_name: str
    last_name: str
    company: str
    email: str | None
    phone: str | None
    address: str | None
    role: str | None
    status: str
    notes: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Profile:
        """Build a Profile from a row mapping returned by the record store."""
        return cls(
            id=int(row["id"]),
            first_name=str(row["first_name"]),
            last_name=str(row["last_name"]),
            company=str(row["company"]),
            email=row["email"],
            phone=row["phone"],
            address=row["address"],
            role=row["role"],
            status=str(row["status"]),
            notes=row["notes"],
            created_at=str(row["created_at"]),
        )


@dataclass(frozen=True)
class Contact:
    """Model representing one logged interaction with a profile.

    Immutable dataclass to prevent accidental mutation of database records.
    """
    id: int
    profile_id: int
    date: str
    type: str
    details: str
    value_eur: float
    created_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Contact:
        """Build a Contact from a row mapping returned by the record store."""
        return cls(
            id=int(row["id"]),
            profile_id=int(row["profile_id"]),
            date=str(row["date"]),
            type=str(row["type"]),
            details=str(row["details"]),
            value_eur=float(row["value_eur"]),
            created_at=str(row["created_at"]),
        )


@dataclass
class NewProfile:
    """Input for profile creation; optional fields default to unset."""
    first_name: str
    last_name: str
    status: str
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    role: str | None = None
    notes: str | None = None


@dataclass
class NewContact:
    """Input for logging an interaction against a profile."""
    profile_id: int
    date: str
    type: str
    details: str
    value_eur: float | None = None


# created_at uses millisecond resolution so same-date contacts order by insertion
_NOW_MS: Final[str] = "(strftime('%Y-%m-%d %H:%M:%f', 'now'))"


def create_tables_sql() -> tuple[str, ...]:
    """Return SQL statements for creating the database tables and indexes.

    Every statement is conditional, so running the full set against an
    existing database is a no-op.

    Returns:
        A tuple of DDL statements in dependency order.
    """
    profiles_table_sql: Final[str] = f"""
    CREATE TABLE IF NOT EXISTS profiles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        first_name TEXT NOT NULL CHECK (length(first_name) > 0),
        last_name TEXT NOT NULL,
        company TEXT NOT NULL DEFAULT '',
        email TEXT,
        phone TEXT,
        address TEXT,
        role TEXT,
        status TEXT NOT NULL,
        notes TEXT,
        created_at TEXT NOT NULL DEFAULT {_NOW_MS},
        UNIQUE (first_name, last_name, company)
    )
    """

    contacts_table_sql: Final[str] = f"""
    CREATE TABLE IF NOT EXISTS contacts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        profile_id INTEGER NOT NULL,
        date TEXT NOT NULL,
        type TEXT NOT NULL,
        details TEXT NOT NULL
            CHECK (length(details) BETWEEN 1 AND {DETAILS_MAX_LENGTH}),
        value_eur REAL NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT {_NOW_MS},
        FOREIGN KEY (profile_id) REFERENCES profiles (id) ON DELETE CASCADE
    )
    """

    scheduled_contacts_table_sql: Final[str] = f"""
    CREATE TABLE IF NOT EXISTS scheduled_contacts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        profile_id INTEGER NOT NULL,
        date_time TEXT NOT NULL,
        type TEXT NOT NULL,
        reminder TEXT,
        details TEXT CHECK (length(details) <= {DETAILS_MAX_LENGTH}),
        value_eur REAL NOT NULL DEFAULT 0,
        completed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT {_NOW_MS},
        FOREIGN KEY (profile_id) REFERENCES profiles (id) ON DELETE CASCADE
    )
    """

    products_table_sql: Final[str] = f"""
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        created_at TEXT NOT NULL DEFAULT {_NOW_MS}
    )
    """

    profile_products_table_sql: Final[str] = f"""
    CREATE TABLE IF NOT EXISTS profile_products (
        profile_id INTEGER NOT NULL,
        product_id INTEGER NOT NULL,
        created_at TEXT NOT NULL DEFAULT {_NOW_MS},
        PRIMARY KEY (profile_id, product_id),
        FOREIGN KEY (profile_id) REFERENCES profiles (id) ON DELETE CASCADE,
        FOREIGN KEY (product_id) REFERENCES products (id) ON DELETE CASCADE
    )
    """

    contacts_index_sql: Final[str] = """
    CREATE INDEX IF NOT EXISTS idx_contacts_profile_date
        ON contacts (profile_id, date, created_at)
    """

    return (
        profiles_table_sql,
        contacts_table_sql,
        scheduled_contacts_table_sql,
        products_table_sql,
        profile_products_table_sql,
        contacts_index_sql,
    )
