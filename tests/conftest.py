"""Shared fixtures for the Profile CRM tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

import pytest
from loguru import logger

from profile_crm.database.models import NewProfile
from profile_crm.database.operations import RecordStore, create_profile


@pytest.fixture(autouse=True)
def reset_logger() -> Generator[None, None, None]:
    """Give every test loguru's default stderr sink and restore it afterwards."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")


@pytest.fixture
def log_messages() -> Generator[list[str], None, None]:
    """Collect loguru messages emitted during a test."""
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "crm.db"


@pytest.fixture
def store(db_path: Path) -> Generator[RecordStore, None, None]:
    """An initialized record store backed by a temporary file."""
    record_store = RecordStore(db_path)
    record_store.initialize()
    yield record_store
    record_store.close()


@pytest.fixture
def profile_id(store: RecordStore) -> int:
    """ID of a minimal test profile."""
    return create_profile(store, NewProfile(first_name="Test", last_name="User", status="Lead"))
