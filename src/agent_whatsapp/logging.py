"""Logging setup and the session failure log."""

import logging
import sys
import traceback
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from .exceptions import (
    SessionClientError,
    NotReadyError,
    InvalidDestinationError,
)

LOGGER_NAME = "agent_whatsapp"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LogLevel(str, Enum):
    """Logging level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _severity_for(exception: Exception) -> LogLevel:
    # Caller mistakes are warnings, session failures errors, anything else a bug
    if isinstance(exception, (NotReadyError, InvalidDestinationError)):
        return LogLevel.WARNING
    if isinstance(exception, SessionClientError):
        return LogLevel.ERROR
    return LogLevel.CRITICAL


class ErrorHandler:
    """
    Owns the package logger and a bounded log of session failures.

    Failures worth a post-mortem (dropped queue entries, startup and auth
    failures) are recorded with the operation that produced them and any
    details the caller attaches, such as the dropped queue entry.
    """

    _instance: Optional["ErrorHandler"] = None

    def __new__(cls) -> "ErrorHandler":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self.logger = logging.getLogger(LOGGER_NAME)
        self.log_level = LogLevel.INFO
        self.error_history: Deque[Dict[str, Any]] = deque(maxlen=1000)

        if not self.logger.handlers:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(logging.INFO)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
            self.logger.addHandler(console)
        self.logger.setLevel(logging.DEBUG)

    @property
    def max_history(self) -> int:
        """Number of failure records kept."""
        return self.error_history.maxlen

    @max_history.setter
    def max_history(self, size: int) -> None:
        self.error_history = deque(self.error_history, maxlen=size)

    def set_log_level(self, level: LogLevel) -> None:
        """Apply a level to every attached handler."""
        self.log_level = level
        for handler in self.logger.handlers:
            handler.setLevel(getattr(logging, level.value))

    def add_file_handler(self, log_file: str) -> None:
        """Also write everything (DEBUG and up) to a file."""
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(file_handler)

    def handle_exception(
        self,
        exception: Exception,
        context: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Log a failure and add it to the failure log.

        Args:
            exception: The failure
            context: Operation that failed (retry_queue, auth, initialize, ...)
            details: Extra data for the record, e.g. the dropped queue entry

        Returns:
            The stored record
        """
        severity = _severity_for(exception)
        tb = exception.__traceback__
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "type": type(exception).__name__,
            "message": str(exception),
            "context": context,
            "severity": severity.value,
            "details": details or {},
            "traceback": (
                "".join(traceback.format_exception(type(exception), exception, tb))
                if tb is not None
                else None
            ),
        }
        self.error_history.append(record)

        label = type(exception).__name__
        if severity == LogLevel.CRITICAL:
            label = f"Unexpected error: {label}"
        self.logger.log(getattr(logging, severity.value), f"[{context}] {label}: {exception}")
        return record

    def get_error_history(
        self,
        count: int = 10,
        severity: Optional[LogLevel] = None,
        context: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Most recent failure records, oldest first.

        Args:
            count: Maximum records to return (0 for all)
            severity: Only records of this severity
            context: Only records from this operation
        """
        history = [
            r for r in self.error_history
            if (severity is None or r["severity"] == severity.value)
            and (context is None or r["context"] == context)
        ]
        return history[-count:] if count else history

    def clear_error_history(self) -> None:
        """Forget all failure records."""
        self.error_history.clear()

    def get_error_summary(self) -> Dict[str, Any]:
        """Count failure records by type, severity and context."""
        summary: Dict[str, Any] = {
            "total_errors": len(self.error_history),
            "by_type": {},
            "by_severity": {},
            "by_context": {},
        }
        for record in self.error_history:
            for key, field in (("by_type", "type"), ("by_severity", "severity"), ("by_context", "context")):
                bucket = summary[key]
                bucket[record[field]] = bucket.get(record[field], 0) + 1
        return summary


_error_handler = ErrorHandler()


def get_error_handler() -> ErrorHandler:
    """Get global error handler instance."""
    return _error_handler


def configure_logging(
    log_level: LogLevel = LogLevel.INFO, log_file: Optional[str] = None
) -> None:
    """Set the console level and optionally add a log file."""
    _error_handler.set_log_level(log_level)
    if log_file:
        _error_handler.add_file_handler(log_file)


def handle_exception(
    exception: Exception,
    context: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Record a failure on the global handler."""
    return _error_handler.handle_exception(exception, context, details)
