"""
Core module for the Core Lightning migrator.

This module contains the error taxonomy and error handling
used throughout the application.
"""

from cln_migrator.core.exceptions import (
    MigratorError,
    ConfigurationError,
    PreflightError,
    SourceUnreadable,
    SourceInvalidFormat,
    TargetUnreachable,
    ConfirmationRequired,
    ToolMissing,
    MissingTool,
    ExecutionError,
    CredentialError,
)

__all__ = [
    "MigratorError",
    "ConfigurationError",
    "PreflightError",
    "SourceUnreadable",
    "SourceInvalidFormat",
    "TargetUnreachable",
    "ConfirmationRequired",
    "ToolMissing",
    "MissingTool",
    "ExecutionError",
    "CredentialError",
]
