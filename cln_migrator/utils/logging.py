"""
Logging setup for the Core Lightning migrator.

This module provides console logging through Rich, optional rotating
file logs, structured JSON output, and a session logger that records
step starts, completions and failures.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, field, asdict
from enum import Enum

from rich.console import Console
from rich.logging import RichHandler


class LogLevel(str, Enum):
    """Log levels for structured logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogCategory(str, Enum):
    """Categories for structured logging."""
    SYSTEM = "system"
    MIGRATION = "migration"
    DATABASE = "database"
    LOADER = "loader"


@dataclass
class LogEntry:
    """Structured log entry with metadata."""
    timestamp: datetime = field(default_factory=datetime.now)
    level: LogLevel = LogLevel.INFO
    category: LogCategory = LogCategory.SYSTEM
    message: str = ""
    session_id: Optional[str] = None
    step: Optional[str] = None
    duration: Optional[float] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert log entry to dictionary."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        """Convert log entry to JSON string."""
        return json.dumps(self.to_dict(), default=str)


_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'exc_info', 'exc_text', 'stack_info', 'taskName', 'message',
}


class StructuredFormatter(logging.Formatter):
    """Formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = getattr(record, 'log_entry', None)

        if log_entry and isinstance(log_entry, LogEntry):
            return log_entry.to_json()

        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created),
            level=LogLevel(record.levelname),
            message=record.getMessage(),
            metadata={
                'logger': record.name,
                'module': record.module,
                'function': record.funcName,
                'line': record.lineno,
            }
        )

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry.metadata[key] = value

        return log_entry.to_json()


PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
PLAIN_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _formatter(structured: bool) -> logging.Formatter:
    if structured:
        return StructuredFormatter()
    return logging.Formatter(fmt=PLAIN_FORMAT, datefmt=PLAIN_DATEFMT)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rich_console: bool = True,
    structured_logging: bool = False,
    max_log_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    console: Optional[Console] = None
) -> logging.Logger:
    """
    Configure the ``cln_migrator`` logger tree.

    Calling this again replaces the handlers installed by an earlier
    call, so the CLI can reconfigure logging per command.

    Args:
        level: Level name for the package logger
        log_file: Session log file; its directory is created if needed
        rich_console: Render console records through rich
        structured_logging: Emit JSON lines instead of text
        max_log_size: Size in bytes at which the session log rotates
        backup_count: Rotated session logs to keep
        console: rich Console for the console handler (stderr by default)

    Returns:
        The package logger
    """
    logger = logging.getLogger("cln_migrator")
    logger.setLevel(getattr(logging, level.upper()))
    for old in list(logger.handlers):
        old.close()
    logger.handlers.clear()

    handler: logging.Handler
    if rich_console and not structured_logging:
        # Log messages contain SQL with brackets; never treat them as markup.
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_formatter(structured_logging))
    logger.addHandler(handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_log_size, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(_formatter(structured_logging))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger below the package logger, e.g. ``cln_migrator.session.<id>``."""
    return logging.getLogger(f"cln_migrator.{name}")


class MigrationLogger:
    """Session logger for migration steps with structured logging support."""

    def __init__(self, session_id: str, structured: bool = False):
        self.session_id = session_id
        self.structured = structured
        self.logger = get_logger(f"session.{session_id}")
        self.step_durations: Dict[str, float] = {}

    def _log(
        self,
        level: LogLevel,
        message: str,
        category: LogCategory = LogCategory.MIGRATION,
        step: Optional[str] = None,
        duration: Optional[float] = None,
        error_code: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        log_method = getattr(self.logger, level.value.lower())
        if self.structured:
            log_entry = LogEntry(
                level=level,
                category=category,
                message=message,
                session_id=self.session_id,
                step=step,
                duration=duration,
                error_code=error_code,
                metadata=metadata or {}
            )
            log_method(message, extra={'log_entry': log_entry})
        else:
            log_method(message, extra=metadata or {})

    def info(self, message: str, category: LogCategory = LogCategory.MIGRATION,
             step: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None):
        """Log info message."""
        self._log(LogLevel.INFO, message, category, step, metadata=metadata)

    def warning(self, message: str, category: LogCategory = LogCategory.MIGRATION,
                step: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None):
        """Log warning message."""
        self._log(LogLevel.WARNING, message, category, step, metadata=metadata)

    def error(self, message: str, category: LogCategory = LogCategory.MIGRATION,
              step: Optional[str] = None, error_code: Optional[str] = None,
              metadata: Optional[Dict[str, Any]] = None):
        """Log error message."""
        self._log(LogLevel.ERROR, message, category, step,
                  error_code=error_code, metadata=metadata)

    def step_start(self, step_name: str):
        """Log step start."""
        self.info(
            f"Starting step: {step_name}",
            step=step_name,
            metadata={'step_status': 'started'}
        )

    def step_skipped(self, step_name: str, reason: str):
        """Log a step that the plan marked as already satisfied."""
        self.info(
            f"Skipping step: {step_name} ({reason})",
            step=step_name,
            metadata={'step_status': 'skipped', 'reason': reason}
        )

    def step_complete(self, step_name: str, duration: float):
        """Log step completion."""
        self.step_durations[step_name] = duration
        self._log(
            LogLevel.INFO,
            f"Completed step: {step_name} (took {duration:.2f}s)",
            step=step_name,
            duration=duration,
            metadata={'step_status': 'completed', 'duration': duration}
        )

    def step_failed(self, step_name: str, error: str, error_code: Optional[str] = None):
        """Log step failure."""
        self.error(
            f"Failed step: {step_name} - {error}",
            step=step_name,
            error_code=error_code,
            metadata={'step_status': 'failed', 'error_details': error}
        )

    def log_database_operation(self, operation: str, database: Optional[str] = None):
        """Log an administrative statement issued against the target."""
        message = f"Database operation: {operation}"
        if database:
            message += f" on database {database}"

        self.info(
            message,
            category=LogCategory.DATABASE,
            metadata={'operation_type': operation, 'database': database}
        )

