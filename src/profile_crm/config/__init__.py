"""Configuration package for the profile CRM."""

from .logging_config import setup_logging, LoggingConfig, StructuredLogger, LoggedOperation
from .settings import Settings, ConfigurationError, load_settings, save_settings

__all__ = [
    # Logging
    "setup_logging",
    "LoggingConfig",
    "StructuredLogger",
    "LoggedOperation",
    # Settings
    "Settings",
    "ConfigurationError",
    "load_settings",
    "save_settings",
]
