"""Logging configuration module with structured logging support."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Any, Dict, Optional, Union

from loguru import logger


VALID_LOG_LEVELS: frozenset[str] = frozenset(
    {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
)


@dataclass(frozen=True)
class LoggingConfig:
    """Configuration for logging system."""

    # File logging
    log_file: Path = Path("logs/profile_crm.log")
    log_level: str = "INFO"
    rotation_size: str = "5 MB"
    retention_count: int = 5
    compression: str = "zip"

    # Console logging
    console_enabled: bool = True
    console_level: str = "INFO"
    console_format: str = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"

    # File format
    file_format: str = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message} | {extra}"

    # Performance monitoring
    enable_performance_logging: bool = True
    slow_operation_threshold_seconds: float = 1.0

    # Error handling
    enable_error_context: bool = True

    def __post_init__(self) -> None:
        """Validate logging configuration."""
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}")
        if self.console_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid console log level: {self.console_level}")
        if self.retention_count < 1:
            raise ValueError("Retention count must be at least 1")
        if self.slow_operation_threshold_seconds <= 0:
            raise ValueError("Slow operation threshold must be positive")


class StructuredLogger:
    """Logger facade adding structured context and timing to CRM operations."""

    def __init__(self, config: LoggingConfig) -> None:
        """Initialize structured logger with configuration."""
        self.config: LoggingConfig = config
        self._setup_logger()

    def _setup_logger(self) -> None:
        """Replace loguru's default handler with the configured sinks."""
        logger.remove()

        if self.config.console_enabled:
            logger.add(
                sys.stderr,
                level=self.config.console_level.upper(),
                format=self.config.console_format,
                colorize=True,
                enqueue=True
            )

        logger.add(
            str(self.config.log_file),
            level=self.config.log_level.upper(),
            format=self.config.file_format,
            rotation=self.config.rotation_size,
            retention=self.config.retention_count,
            compression=self.config.compression,
            enqueue=True,
            serialize=False
        )

        if self.config.enable_error_context:
            logger.add(
                str(self.config.log_file.with_suffix(".error.log")),
                level="ERROR",
                format=self._get_error_format(),
                rotation=self.config.rotation_size,
                retention=self.config.retention_count,
                compression=self.config.compression,
                enqueue=True,
                backtrace=True,
                diagnose=False
            )

    def _get_error_format(self) -> str:
        """Get detailed error logging format."""
        return (
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}\n"
            "Exception: {exception}\n"
            "Extra: {extra}\n"
            "---"
        )

    def log_operation_start(self, operation: str, **context: Any) -> str:
        """Log the start of an operation and return operation ID.

        Args:
            operation: Name of the operation.
            **context: Additional context data.

        Returns:
            Operation ID for tracking.
        """
        operation_id: str = f"{operation}_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"

        logger.bind(
            operation_id=operation_id,
            operation=operation,
            **context
        ).info(f"Operation started: {operation}")

        return operation_id

    def log_operation_end(
        self,
        operation_id: str,
        operation: str,
        success: bool = True,
        error: Optional[BaseException] = None,
        **context: Any
    ) -> None:
        """Log the end of an operation.

        Args:
            operation_id: Operation ID from log_operation_start.
            operation: Name of the operation.
            success: Whether operation was successful.
            error: Exception if operation failed.
            **context: Additional context data.
        """
        bound = logger.bind(operation_id=operation_id, operation=operation, success=success, **context)

        if success:
            bound.success(f"Operation completed: {operation}")
        else:
            bound.bind(
                error_type=type(error).__name__ if error else "Unknown",
                error_message=str(error) if error else "Unknown error"
            ).error(f"Operation failed: {operation}")

    def log_performance_metric(
        self,
        metric_name: str,
        value: Union[int, float],
        unit: str = "",
        **context: Any
    ) -> None:
        """Log a performance metric, warning when a duration exceeds the threshold."""
        logger.bind(metric_name=metric_name, metric_value=value, metric_unit=unit, **context).debug(
            f"Performance metric: {metric_name}={value}{unit}"
        )

        if (self.config.enable_performance_logging and
                metric_name.endswith("_duration_seconds") and
                value > self.config.slow_operation_threshold_seconds):
            logger.warning(
                f"Slow operation detected: {metric_name} took {value:.2f}s "
                f"(threshold {self.config.slow_operation_threshold_seconds}s)"
            )

    def log_database_operation(
        self,
        operation: str,
        table: str,
        affected_rows: int = 0,
        execution_time_ms: Optional[float] = None,
        **context: Any
    ) -> None:
        """Log database operations with structured data.

        Args:
            operation: Database operation (INSERT, UPDATE, DELETE, ...).
            table: Database table name.
            affected_rows: Number of affected rows.
            execution_time_ms: Execution time in milliseconds.
            **context: Additional context data.
        """
        logger.bind(
            db_operation=operation,
            db_table=table,
            db_affected_rows=affected_rows,
            db_execution_time_ms=execution_time_ms,
            **context
        ).info(f"Database operation: {operation} on {table}")

    def log_backup_operation(
        self,
        operation: str,
        backup_file: Optional[Path],
        success: bool,
        removed_count: int = 0,
        error: Optional[str] = None
    ) -> None:
        """Log backup creation, pruning and restore results."""
        bound = logger.bind(
            backup_operation=operation,
            backup_file=str(backup_file) if backup_file else None,
            backup_success=success,
            backups_removed=removed_count,
            backup_error=error
        )
        if success:
            bound.info(f"Backup operation: {operation}")
        else:
            bound.error(f"Backup operation failed: {operation}")


def setup_logging(config: Optional[LoggingConfig] = None) -> StructuredLogger:
    """Setup logging system with configuration.

    Args:
        config: Logging configuration. If None, uses default configuration.

    Returns:
        Configured StructuredLogger instance.
    """
    if config is None:
        config = LoggingConfig()

    config.log_file.parent.mkdir(parents=True, exist_ok=True)

    structured_logger: StructuredLogger = StructuredLogger(config)

    logger.bind(
        log_file=str(config.log_file),
        log_level=config.log_level,
        console_enabled=config.console_enabled
    ).info("Logging system initialized")

    return structured_logger


class LoggedOperation:
    """Context manager for logging operations with automatic timing."""

    def __init__(
        self,
        structured_logger: StructuredLogger,
        operation_name: str,
        **context: Any
    ) -> None:
        self.structured_logger: StructuredLogger = structured_logger
        self.operation_name: str = operation_name
        self.context: Dict[str, Any] = context
        self.operation_id: Optional[str] = None
        self.start_time: Optional[datetime] = None

    def __enter__(self) -> LoggedOperation:
        self.start_time = datetime.now()
        self.operation_id = self.structured_logger.log_operation_start(
            self.operation_name,
            **self.context
        )
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        _: Optional[TracebackType]
    ) -> None:
        if self.start_time and self.operation_id:
            duration_seconds: float = (datetime.now() - self.start_time).total_seconds()

            self.structured_logger.log_performance_metric(
                f"{self.operation_name}_duration_seconds",
                duration_seconds,
                "s",
                operation_id=self.operation_id
            )

            self.structured_logger.log_operation_end(
                self.operation_id,
                self.operation_name,
                success=exc_type is None,
                error=exc_val,
                duration_seconds=duration_seconds,
                **self.context
            )
