"""Credential handling for the Core Lightning migrator."""

from .credentials import (
    ADMIN_PASSWORD_ENV,
    APP_PASSWORD_ENV,
    CredentialBroker,
    InteractiveCredentialBroker,
    KeyringCredentialBroker,
    StaticCredentialBroker,
    scoped_pgpassword,
)

__all__ = [
    "ADMIN_PASSWORD_ENV",
    "APP_PASSWORD_ENV",
    "CredentialBroker",
    "InteractiveCredentialBroker",
    "KeyringCredentialBroker",
    "StaticCredentialBroker",
    "scoped_pgpassword",
]
