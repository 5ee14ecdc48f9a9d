"""
Utilities module for the Core Lightning migrator.

This module contains utility functions and helper classes
used throughout the application.
"""

from cln_migrator.utils.helpers import (
    generate_session_id,
    format_duration,
    load_config_file,
    quote_userinfo,
    mask_dsn,
)
from cln_migrator.utils.logging import (
    setup_logging,
    get_logger,
    MigrationLogger,
)

__all__ = [
    # Helper functions
    "generate_session_id",
    "format_duration",
    "load_config_file",
    "quote_userinfo",
    "mask_dsn",
    # Logging utilities
    "setup_logging",
    "get_logger",
    "MigrationLogger",
]
