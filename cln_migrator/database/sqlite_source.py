"""Read-only access to the Core Lightning SQLite database using built-in sqlite3."""

import logging
import os
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Dict, List, Optional, Union


logger = logging.getLogger(__name__)


class SQLiteSource:
    """Read-only probes against the source SQLite database.

    The file is always opened with ``mode=ro`` so that validating a
    wallet database can never modify it.
    """

    def __init__(self, path: Union[str, Path], timeout: float = 20.0):
        """Initialize the source reader.

        Args:
            path: Path to the SQLite database file
            timeout: Seconds to wait on a locked database
        """
        self.path = Path(path)
        self.timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        """Open a read-only connection to the source file."""
        uri = f"{self.path.resolve().as_uri()}?mode=ro"
        return sqlite3.connect(uri, uri=True, timeout=self.timeout)

    def is_readable(self) -> bool:
        """Check that the path is a regular file the current user can read."""
        return self.path.is_file() and os.access(self.path, os.R_OK)

    def is_valid(self) -> bool:
        """Check that the file is a well-formed SQLite database.

        Returns:
            True if SQLite can read the schema, False otherwise
        """
        try:
            with closing(self._connect()) as conn:
                # Reading sqlite_master forces SQLite to parse the file header.
                conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
            return True
        except sqlite3.Error as e:
            logger.debug(f"SQLite validity check failed for {self.path}: {e}")
            return False

    def schema_version(self) -> Optional[int]:
        """Read the Core Lightning schema version.

        Returns:
            The value stored in the ``version`` table, or None when the
            table is missing, empty or not an integer
        """
        try:
            with closing(self._connect()) as conn:
                row = conn.execute("SELECT version FROM version").fetchone()
        except sqlite3.Error as e:
            logger.debug(f"Could not read schema version from {self.path}: {e}")
            return None

        if row is None or row[0] is None:
            return None
        try:
            return int(row[0])
        except (TypeError, ValueError):
            logger.debug(f"Unrecognised schema version {row[0]!r} in {self.path}")
            return None

    def list_tables(self) -> List[str]:
        """List user tables in the source database, sorted by name."""
        with closing(self._connect()) as conn:
            return self._table_names(conn)

    def table_row_counts(self) -> Dict[str, int]:
        """Count rows in every user table."""
        counts: Dict[str, int] = {}
        with closing(self._connect()) as conn:
            for table in self._table_names(conn):
                quoted = '"' + table.replace('"', '""') + '"'
                counts[table] = conn.execute(f"SELECT COUNT(*) FROM {quoted}").fetchone()[0]
        return counts

    @staticmethod
    def _table_names(conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [row[0] for row in rows]

    def __repr__(self) -> str:
        return f"SQLiteSource(path={str(self.path)!r})"
