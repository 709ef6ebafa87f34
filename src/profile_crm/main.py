"""
Main Application Entry Point for the Profile CRM

Wires the record store, backup manager and request bridge together and owns
their lifetime.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from loguru import logger

from .backup.manager import BackupManager
from .bridge import RequestBridge
from .config.logging_config import StructuredLogger, setup_logging
from .config.settings import Settings
from .database.operations import DatabaseError, InitializationError, RecordStore


class CRMApplication:
    """Main application class that coordinates all components."""

    def __init__(self, settings: Optional[Settings] = None, configure_logging: bool = True) -> None:
        """Initialize the application.

        Args:
            settings: Application settings (defaults if None).
            configure_logging: Whether to install the configured log sinks.
        """
        self.settings: Settings = settings or Settings()
        self.configure_logging: bool = configure_logging
        self.structured_logger: Optional[StructuredLogger] = None
        self.store: Optional[RecordStore] = None
        self.backup_manager: Optional[BackupManager] = None
        self.bridge: Optional[RequestBridge] = None

    def _setup_logging(self) -> None:
        """Setup structured logging."""
        try:
            self.structured_logger = setup_logging(self.settings.logging_config())
            logger.info("Structured logging initialized successfully")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to initialize structured logging: {e}")

    def start(self) -> bool:
        """Open the store and build the components that depend on it.

        Returns:
            True if initialization successful (or already started)
        """
        if self.store is not None:
            logger.debug("Application already started")
            return True

        if self.configure_logging:
            self._setup_logging()

        store = RecordStore(self.settings.database_path, structured_logger=self.structured_logger)
        try:
            store.initialize()
        except InitializationError as e:
            logger.error(f"Application initialization failed: {e}")
            return False

        self.store = store
        if self.settings.backup_enabled:
            self.backup_manager = BackupManager(
                store,
                backup_directory=self.settings.backup_directory,
                retention_count=self.settings.retention_count,
                prefix=self.settings.backup_prefix,
                strategy=self.settings.backup_strategy,
                structured_logger=self.structured_logger
            )
        self.bridge = RequestBridge(store, self.backup_manager)

        logger.info("Application initialized successfully")
        return True

    def shutdown(self) -> None:
        """Take the shutdown backup when configured, then release the store."""
        if self.store is None:
            return

        if self.backup_manager is not None and self.settings.backup_on_close:
            try:
                backup_file = self.backup_manager.create_backup()
                logger.info(f"Shutdown backup created: {backup_file}")
            except DatabaseError as e:
                logger.error(f"Shutdown backup failed: {e}")

        self.store.close()
        self.store = None
        self.backup_manager = None
        self.bridge = None
        logger.info("Application shut down")


@contextmanager
def crm_session(settings: Optional[Settings] = None, configure_logging: bool = True) -> Iterator[CRMApplication]:
    """Yield a started application and shut it down afterwards.

    Raises:
        InitializationError: If the application could not start.
    """
    application = CRMApplication(settings, configure_logging=configure_logging)
    if not application.start():
        raise InitializationError(f"Could not open CRM database at {application.settings.database_path}")
    try:
        yield application
    finally:
        application.shutdown()
