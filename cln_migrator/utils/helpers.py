"""
Helper utilities for the Core Lightning migrator.
"""

import json
import uuid
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, Union
from urllib.parse import quote, urlsplit, urlunsplit

import yaml


def generate_session_id() -> str:
    """Generate a unique session ID."""
    timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    unique_id = str(uuid.uuid4())[:8]
    return f"migration_{timestamp}_{unique_id}"


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def load_config_file(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Args:
        file_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_path.suffix.lower() in ['.yaml', '.yml']:
            data = yaml.safe_load(f)
        elif file_path.suffix.lower() == '.json':
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_path.suffix}")

    return data or {}


def quote_userinfo(value: str) -> str:
    """Percent-encode a user name or password for use in a connection URI."""
    return quote(value, safe="")


def mask_dsn(dsn: str) -> str:
    """Replace the password in a connection URI with asterisks."""
    parts = urlsplit(dsn)
    if parts.password is None:
        return dsn

    userinfo = parts.username or ""
    host = parts.netloc.rsplit("@", 1)[-1]
    netloc = f"{userinfo}:***@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
