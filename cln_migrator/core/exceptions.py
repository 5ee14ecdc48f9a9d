"""
Custom exceptions for the Core Lightning migrator.

This module defines the error taxonomy used throughout the
application. Every error carries a machine readable code and a
details dictionary so the CLI can render remediation hints.
"""

from typing import Any, Dict, List, Optional


class MigratorError(Exception):
    """Base exception class for migrator errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(MigratorError):
    """Raised when command line arguments or config files are invalid."""
    pass


class PreflightError(MigratorError):
    """Raised when the source or target is unusable before any change is made."""

    def __init__(
        self,
        message: str,
        failed_checks: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.failed_checks = failed_checks or []


class SourceUnreadable(PreflightError):
    """Raised when the SQLite file is missing or cannot be read."""
    pass


class SourceInvalidFormat(PreflightError):
    """Raised when the source is not a Core Lightning SQLite database."""
    pass


class TargetUnreachable(PreflightError):
    """Raised when the PostgreSQL server refuses the administrative login."""
    pass


class ConfirmationRequired(PreflightError):
    """Raised when a destructive choice needs an operator decision."""
    pass


class ToolMissing(MigratorError):
    """Raised when a required external program is not installed."""

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        install_hints: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.tool = tool
        self.install_hints = install_hints or []


MissingTool = ToolMissing


class ExecutionError(MigratorError):
    """Raised when a migration step's underlying command fails."""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        command: Optional[str] = None,
        exit_status: Optional[int] = None,
        output: Optional[str] = None,
        log_path: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.step = step
        self.command = command
        self.exit_status = exit_status
        self.output = output
        self.log_path = log_path


class CredentialError(MigratorError):
    """Raised when a password is empty, mismatched or unavailable."""
    pass
