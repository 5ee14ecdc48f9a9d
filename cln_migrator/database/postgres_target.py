"""PostgreSQL target client implementation using psycopg2."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import psycopg2
from psycopg2 import Error as PostgreSQLError
from psycopg2 import sql

from cln_migrator.core.exceptions import ExecutionError
from cln_migrator.models.config import TargetConfig


logger = logging.getLogger(__name__)

MAINTENANCE_DATABASE = "postgres"


@dataclass(frozen=True)
class AdminStatement:
    """An administrative SQL statement and a loggable description of it.

    The description never contains bound parameters, so statements
    carrying passwords can be logged and reported safely.
    """
    query: sql.Composable
    description: str
    params: Tuple = field(default_factory=tuple)


def _display_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def create_database_statement(database: str) -> AdminStatement:
    return AdminStatement(
        sql.SQL("CREATE DATABASE {}").format(sql.Identifier(database)),
        f"CREATE DATABASE {_display_ident(database)}",
    )


def drop_database_statement(database: str) -> AdminStatement:
    return AdminStatement(
        sql.SQL("DROP DATABASE IF EXISTS {}").format(sql.Identifier(database)),
        f"DROP DATABASE IF EXISTS {_display_ident(database)}",
    )


def create_role_statement(role: str, password: str) -> AdminStatement:
    return AdminStatement(
        sql.SQL("CREATE ROLE {} LOGIN PASSWORD %s").format(sql.Identifier(role)),
        f"CREATE ROLE {_display_ident(role)} LOGIN PASSWORD '***'",
        (password,),
    )


def alter_role_password_statement(role: str, password: str) -> AdminStatement:
    return AdminStatement(
        sql.SQL("ALTER ROLE {} WITH LOGIN PASSWORD %s").format(sql.Identifier(role)),
        f"ALTER ROLE {_display_ident(role)} WITH LOGIN PASSWORD '***'",
        (password,),
    )


def alter_database_owner_statement(database: str, role: str) -> AdminStatement:
    return AdminStatement(
        sql.SQL("ALTER DATABASE {} OWNER TO {}").format(
            sql.Identifier(database), sql.Identifier(role)
        ),
        f"ALTER DATABASE {_display_ident(database)} OWNER TO {_display_ident(role)}",
    )


def grant_schema_statement(role: str, schema: str = "public") -> AdminStatement:
    return AdminStatement(
        sql.SQL("GRANT ALL ON SCHEMA {} TO {}").format(
            sql.Identifier(schema), sql.Identifier(role)
        ),
        f"GRANT ALL ON SCHEMA {_display_ident(schema)} TO {_display_ident(role)}",
    )


def grant_tables_statement(role: str, schema: str = "public") -> AdminStatement:
    return AdminStatement(
        sql.SQL("GRANT ALL PRIVILEGES ON ALL TABLES IN SCHEMA {} TO {}").format(
            sql.Identifier(schema), sql.Identifier(role)
        ),
        f"GRANT ALL PRIVILEGES ON ALL TABLES IN SCHEMA {_display_ident(schema)} "
        f"TO {_display_ident(role)}",
    )


def grant_sequences_statement(role: str, schema: str = "public") -> AdminStatement:
    return AdminStatement(
        sql.SQL("GRANT ALL PRIVILEGES ON ALL SEQUENCES IN SCHEMA {} TO {}").format(
            sql.Identifier(schema), sql.Identifier(role)
        ),
        f"GRANT ALL PRIVILEGES ON ALL SEQUENCES IN SCHEMA {_display_ident(schema)} "
        f"TO {_display_ident(role)}",
    )


def default_privileges_statement(role: str, schema: str = "public") -> AdminStatement:
    return AdminStatement(
        sql.SQL("ALTER DEFAULT PRIVILEGES IN SCHEMA {} GRANT ALL ON TABLES TO {}").format(
            sql.Identifier(schema), sql.Identifier(role)
        ),
        f"ALTER DEFAULT PRIVILEGES IN SCHEMA {_display_ident(schema)} "
        f"GRANT ALL ON TABLES TO {_display_ident(role)}",
    )


class PostgresTarget:
    """Administrative client for the PostgreSQL target using psycopg2.

    Every call opens a short-lived autocommit connection as the
    administrative user: CREATE DATABASE and DROP DATABASE cannot run
    inside a transaction block.
    """

    def __init__(self, config: TargetConfig, password: Optional[str] = None):
        """Initialize the target client.

        Args:
            config: Target connection descriptor
            password: Administrative password, None for peer/trust auth
        """
        self.config = config
        self._password = password

    def _connection_params(self, database: str) -> dict:
        params = {
            "dbname": database,
            "user": self.config.admin_user,
            "host": self.config.socket_directory if self.config.uses_socket else self.config.host,
            "port": self.config.effective_port,
            "connect_timeout": self.config.connect_timeout,
        }
        if self._password:
            params["password"] = self._password
        return params

    def _connect(self, database: str = MAINTENANCE_DATABASE):
        conn = psycopg2.connect(**self._connection_params(database))
        conn.autocommit = True
        return conn

    @contextmanager
    def _cursor(self, database: str = MAINTENANCE_DATABASE) -> Iterator:
        conn = self._connect(database)
        try:
            with conn.cursor() as cursor:
                yield cursor
        finally:
            conn.close()

    def _fetch_value(self, query: str, params: Tuple = (), database: str = MAINTENANCE_DATABASE):
        with self._cursor(database) as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
        return row[0] if row else None

    def check_connectivity(self) -> bool:
        """Check that the administrative user can log in.

        Returns:
            True if a trivial query succeeds, False otherwise
        """
        try:
            self._fetch_value("SELECT 1")
            logger.info(
                f"Connected to PostgreSQL as '{self.config.admin_user}' via {self.config.endpoint}"
            )
            return True
        except PostgreSQLError as e:
            logger.error(f"Failed to connect to PostgreSQL as '{self.config.admin_user}': {e}")
            return False

    def server_version(self) -> str:
        """Return the server's version string."""
        return str(self._fetch_value("SELECT version()")).strip()

    def can_create_databases(self) -> bool:
        """Check that the administrative user may create databases."""
        value = self._fetch_value(
            "SELECT rolcreatedb OR rolsuper FROM pg_catalog.pg_roles WHERE rolname = %s",
            (self.config.admin_user,),
        )
        return bool(value)

    def database_exists(self, database: str) -> bool:
        """Check whether a database exists."""
        return self._fetch_value(
            "SELECT 1 FROM pg_catalog.pg_database WHERE datname = %s", (database,)
        ) is not None

    def role_exists(self, role: str) -> bool:
        """Check whether a role exists."""
        return self._fetch_value(
            "SELECT 1 FROM pg_catalog.pg_roles WHERE rolname = %s", (role,)
        ) is not None

    def database_owner(self, database: str) -> Optional[str]:
        """Return the owner of a database, or None if it does not exist."""
        return self._fetch_value(
            "SELECT pg_catalog.pg_get_userbyid(datdba) FROM pg_catalog.pg_database WHERE datname = %s",
            (database,),
        )

    def user_tables(self, database: str) -> List[Tuple[str, str]]:
        """List (schema, table) pairs of ordinary tables outside the system schemas."""
        with self._cursor(database) as cursor:
            cursor.execute(
                """
                SELECT table_schema, table_name
                FROM information_schema.tables
                WHERE table_type = 'BASE TABLE'
                  AND table_schema NOT IN ('pg_catalog', 'information_schema')
                ORDER BY table_schema, table_name
                """
            )
            return [(row[0], row[1]) for row in cursor.fetchall()]

    def database_has_data(
        self, database: str, tables: Optional[List[Tuple[str, str]]] = None
    ) -> bool:
        """Check whether any user table in the database holds at least one row.

        ``tables`` is the result of an earlier ``user_tables`` call, if any.
        """
        if tables is None:
            tables = self.user_tables(database)
        if not tables:
            return False

        with self._cursor(database) as cursor:
            for schema, table in tables:
                cursor.execute(
                    sql.SQL("SELECT EXISTS (SELECT 1 FROM {}.{})").format(
                        sql.Identifier(schema), sql.Identifier(table)
                    )
                )
                if cursor.fetchone()[0]:
                    return True
        return False

    def execute_admin(self, statement: AdminStatement, database: str = MAINTENANCE_DATABASE) -> None:
        """Execute an administrative statement.

        Args:
            statement: Statement to execute
            database: Database to connect to while executing

        Raises:
            ExecutionError: If the server rejects the statement
        """
        logger.debug(f"Executing on {database}: {statement.description}")
        try:
            with self._cursor(database) as cursor:
                cursor.execute(statement.query, statement.params or None)
        except PostgreSQLError as e:
            raise ExecutionError(
                f"Statement failed: {statement.description}: {str(e).strip()}",
                command=statement.description,
                exit_status=1,
                output=(getattr(e, "pgerror", None) or str(e)).strip(),
                details={"database": database, "sqlstate": getattr(e, "pgcode", None)},
            ) from e
