"""Source and target database access for the Core Lightning migrator."""

from .sqlite_source import SQLiteSource
from .postgres_target import (
    AdminStatement,
    PostgresTarget,
    alter_database_owner_statement,
    alter_role_password_statement,
    create_database_statement,
    create_role_statement,
    default_privileges_statement,
    drop_database_statement,
    grant_schema_statement,
    grant_sequences_statement,
    grant_tables_statement,
)

__all__ = [
    "SQLiteSource",
    "AdminStatement",
    "PostgresTarget",
    "alter_database_owner_statement",
    "alter_role_password_statement",
    "create_database_statement",
    "create_role_statement",
    "default_privileges_statement",
    "drop_database_statement",
    "grant_schema_statement",
    "grant_sequences_statement",
    "grant_tables_statement",
]
