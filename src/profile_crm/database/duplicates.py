"""Duplicate profile detection."""

from __future__ import annotations

from typing import Any

from loguru import logger

from .models import Profile
from .operations import RecordStore


def find_duplicate(
    store: RecordStore,
    first_name: str,
    last_name: str,
    company: str | None = None
) -> Profile | None:
    """Return the existing profile that shares the candidate's identity key.

    Equality is exact and case-sensitive on (first_name, last_name, company),
    the same columns and semantics as the profiles UNIQUE constraint. A
    missing company compares as an empty string, which is how it is stored.

    This is a pre-check only; the constraint still guards the insert.

    Args:
        store: Initialized record store.
        first_name: Candidate first name.
        last_name: Candidate last name.
        company: Candidate company, or None.

    Returns:
        The matching Profile, or None if the candidate is unique.
    """
    row: dict[str, Any] | None = store.query_one(
        """SELECT * FROM profiles
           WHERE first_name = ? AND last_name = ? AND company = ?""",
        (first_name, last_name, company or "")
    )
    if row is None:
        return None

    duplicate: Profile = Profile.from_row(row)
    logger.info(f"Duplicate profile found: ID {duplicate.id} ({first_name} {last_name})")
    return duplicate
