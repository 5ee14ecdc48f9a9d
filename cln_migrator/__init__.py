"""
Core Lightning SQLite to PostgreSQL migrator

Moves a lightningd SQLite wallet database into PostgreSQL through
pgloader, creates a least-privilege application role and hands it
ownership of the migrated database.
"""

__version__ = "0.1.0"

from cln_migrator.models.config import MigrationConfig
from cln_migrator.models.session import MigrationSession, MigrationStatus

__all__ = [
    "MigrationConfig",
    "MigrationSession",
    "MigrationStatus",
]
