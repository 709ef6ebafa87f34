"""Database package for the profile CRM."""

from .models import Contact, NewContact, NewProfile, Profile, DETAILS_MAX_LENGTH
from .operations import (
    DatabaseError,
    ConstraintViolationError,
    SyntaxOrBindingError,
    StorageIOError,
    InitializationError,
    StoreClosedError,
    ExecuteResult,
    RecordStore,
    create_profile,
    get_profile,
    list_profiles,
    search_profiles,
    update_profile,
    delete_profile,
    log_contact,
    get_contact_history,
    clear_contacts,
)
from .duplicates import find_duplicate

__all__ = [
    # Models
    "Profile",
    "Contact",
    "NewProfile",
    "NewContact",
    "DETAILS_MAX_LENGTH",
    # Exceptions
    "DatabaseError",
    "ConstraintViolationError",
    "SyntaxOrBindingError",
    "StorageIOError",
    "InitializationError",
    "StoreClosedError",
    # Store
    "ExecuteResult",
    "RecordStore",
    # Operations
    "create_profile",
    "get_profile",
    "list_profiles",
    "search_profiles",
    "update_profile",
    "delete_profile",
    "log_contact",
    "get_contact_history",
    "clear_contacts",
    "find_duplicate",
]
