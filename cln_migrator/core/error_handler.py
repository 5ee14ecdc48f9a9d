"""
Error categorization and reporting for the Core Lightning migrator.

This module maps migrator exceptions to categories, severities and
remediation steps so that every failure reaching the operator comes
with enough context to diagnose it. Nothing here retries: every
failure is fatal to the current run.
"""

import logging
import traceback
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type
from dataclasses import dataclass, field

from .exceptions import (
    MigratorError,
    ConfigurationError,
    PreflightError,
    SourceUnreadable,
    SourceInvalidFormat,
    TargetUnreachable,
    ConfirmationRequired,
    ToolMissing,
    ExecutionError,
    CredentialError,
)


class ErrorCategory(str, Enum):
    """Categories of errors for reporting."""
    CONFIGURATION = "configuration"
    SOURCE = "source"
    CONNECTIVITY = "connectivity"
    CONFIRMATION = "confirmation"
    TOOLING = "tooling"
    EXECUTION = "execution"
    CREDENTIAL = "credential"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryStrategy(str, Enum):
    """What the operator can do after a failure."""
    FIX_AND_RERUN = "fix_and_rerun"
    INSPECT_LOG = "inspect_log"
    CONFIRM = "confirm"
    MANUAL = "manual"
    ABORT = "abort"


@dataclass
class ErrorContext:
    """Context information for an error occurrence."""
    timestamp: datetime = field(default_factory=datetime.now)
    operation: Optional[str] = None
    step: Optional[str] = None
    session_id: Optional[str] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorInfo:
    """Categorized error information."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    context: ErrorContext
    recovery_strategies: List[RecoveryStrategy]
    remediation_steps: List[str]
    traceback_str: str
    safe_to_rerun: bool = True


class ErrorHandler:
    """
    Categorizes migrator errors and logs them with remediation hints.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._error_mappings = self._build_error_mappings()
        self._recovery_strategies = self._build_recovery_strategies()
        self._remediation_guides = self._build_remediation_guides()

    def _build_error_mappings(self) -> Dict[Type[Exception], Dict[str, Any]]:
        """Build mapping of exception types to error categories and severities."""
        # Most specific types first, lookups fall back to isinstance in order.
        return {
            ConfigurationError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.HIGH,
            },
            SourceUnreadable: {
                "category": ErrorCategory.SOURCE,
                "severity": ErrorSeverity.HIGH,
            },
            SourceInvalidFormat: {
                "category": ErrorCategory.SOURCE,
                "severity": ErrorSeverity.HIGH,
            },
            TargetUnreachable: {
                "category": ErrorCategory.CONNECTIVITY,
                "severity": ErrorSeverity.HIGH,
            },
            ConfirmationRequired: {
                "category": ErrorCategory.CONFIRMATION,
                "severity": ErrorSeverity.MEDIUM,
            },
            PreflightError: {
                "category": ErrorCategory.SOURCE,
                "severity": ErrorSeverity.HIGH,
            },
            ToolMissing: {
                "category": ErrorCategory.TOOLING,
                "severity": ErrorSeverity.HIGH,
            },
            ExecutionError: {
                "category": ErrorCategory.EXECUTION,
                "severity": ErrorSeverity.CRITICAL,
            },
            CredentialError: {
                "category": ErrorCategory.CREDENTIAL,
                "severity": ErrorSeverity.MEDIUM,
            },
            FileNotFoundError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.MEDIUM,
            },
        }

    def _build_recovery_strategies(self) -> Dict[ErrorCategory, List[RecoveryStrategy]]:
        """Build recovery strategies for each error category."""
        return {
            ErrorCategory.CONFIGURATION: [RecoveryStrategy.FIX_AND_RERUN],
            ErrorCategory.SOURCE: [RecoveryStrategy.FIX_AND_RERUN, RecoveryStrategy.ABORT],
            ErrorCategory.CONNECTIVITY: [RecoveryStrategy.FIX_AND_RERUN, RecoveryStrategy.MANUAL],
            ErrorCategory.CONFIRMATION: [RecoveryStrategy.CONFIRM],
            ErrorCategory.TOOLING: [RecoveryStrategy.MANUAL, RecoveryStrategy.FIX_AND_RERUN],
            ErrorCategory.EXECUTION: [RecoveryStrategy.INSPECT_LOG, RecoveryStrategy.MANUAL],
            ErrorCategory.CREDENTIAL: [RecoveryStrategy.FIX_AND_RERUN],
            ErrorCategory.UNKNOWN: [RecoveryStrategy.MANUAL, RecoveryStrategy.ABORT],
        }

    def _build_remediation_guides(self) -> Dict[ErrorCategory, List[str]]:
        """Build remediation guides for each error category."""
        return {
            ErrorCategory.CONFIGURATION: [
                "Check the command line arguments and the YAML config file",
                "Use either --socket or --host/--port, not both",
            ],
            ErrorCategory.SOURCE: [
                "Stop lightningd before migrating its database",
                "Check that the path points at lightningd.sqlite3 and is readable",
                "Run 'sqlite3 <file> \"SELECT version FROM version;\"' to inspect the file",
            ],
            ErrorCategory.CONNECTIVITY: [
                "Ensure PostgreSQL is running and accepts connections",
                "Verify the superuser name and password",
                "Check pg_hba.conf allows the chosen connection method",
                "The superuser needs the CREATEDB privilege",
            ],
            ErrorCategory.CONFIRMATION: [
                "Rerun interactively to choose between skipping and recreating",
                "Pass --skip-existing to keep the existing data",
                "Pass --recreate to drop and recreate the database (destroys its data)",
            ],
            ErrorCategory.TOOLING: [
                "Install the missing program and make sure it is on PATH",
                "Rerun with --install-missing to let the migrator try the system package manager",
            ],
            ErrorCategory.EXECUTION: [
                "Inspect the step output before rerunning",
                "A failed bulk load may leave a partially populated database",
                "Rerun with --recreate once the cause is fixed",
            ],
            ErrorCategory.CREDENTIAL: [
                "Provide a non-empty password and confirm it exactly",
                "For scripted runs set CLN_MIGRATE_APP_PASSWORD",
            ],
            ErrorCategory.UNKNOWN: [
                "Rerun with --verbose for a full traceback",
            ],
        }

    def _find_mapping(self, error: Exception) -> Dict[str, Any]:
        mapping = self._error_mappings.get(type(error))
        if mapping:
            return mapping

        for exc_type, exc_mapping in self._error_mappings.items():
            if isinstance(error, exc_type):
                return exc_mapping

        return {
            "category": ErrorCategory.UNKNOWN,
            "severity": ErrorSeverity.MEDIUM,
        }

    def categorize_error(self, error: Exception, context: Optional[ErrorContext] = None) -> ErrorInfo:
        """
        Categorize an error and build its remediation steps.

        Args:
            error: The exception that occurred
            context: Optional context information

        Returns:
            ErrorInfo object with categorized error details
        """
        mapping = self._find_mapping(error)
        category = mapping["category"]

        remediation_steps: List[str] = []
        if isinstance(error, ToolMissing):
            remediation_steps.extend(error.install_hints)
        if isinstance(error, ExecutionError) and error.log_path:
            remediation_steps.append(f"Check log file: {error.log_path}")
        remediation_steps.extend(self._remediation_guides.get(category, []))

        # A failed bulk load needs operator inspection before any rerun.
        safe_to_rerun = not (
            isinstance(error, ExecutionError) and error.details.get("partial_load", False)
        )

        return ErrorInfo(
            error=error,
            category=category,
            severity=mapping["severity"],
            context=context or ErrorContext(),
            recovery_strategies=self._recovery_strategies.get(category, [RecoveryStrategy.MANUAL]),
            remediation_steps=remediation_steps,
            traceback_str=traceback.format_exc(),
            safe_to_rerun=safe_to_rerun,
        )

    def handle_error(self, error: Exception, context: Optional[ErrorContext] = None) -> ErrorInfo:
        """
        Categorize and log an error.

        Args:
            error: The exception that occurred
            context: Optional context information

        Returns:
            ErrorInfo object with error details
        """
        error_info = self.categorize_error(error, context)
        self._log_error(error_info)
        return error_info

    def _log_error(self, error_info: ErrorInfo) -> None:
        """Log error information with appropriate level."""
        error = error_info.error
        log_data = {
            "error_type": type(error).__name__,
            "error_code": getattr(error, "code", None),
            "category": error_info.category.value,
            "severity": error_info.severity.value,
            "operation": error_info.context.operation,
            "step": error_info.context.step,
            "session_id": error_info.context.session_id,
            "safe_to_rerun": error_info.safe_to_rerun,
            "recovery_strategies": [s.value for s in error_info.recovery_strategies],
        }

        message = f"{type(error).__name__}: {error}"
        if error_info.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(message, extra=log_data)
        elif error_info.severity == ErrorSeverity.HIGH:
            self.logger.error(message, extra=log_data)
        elif error_info.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(message, extra=log_data)
        else:
            self.logger.info(message, extra=log_data)

        if error_info.severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]:
            self.logger.debug("Error traceback", extra={"traceback": error_info.traceback_str})


def is_migrator_error(error: Exception) -> bool:
    """Whether an exception belongs to the migrator's own taxonomy."""
    return isinstance(error, MigratorError)
