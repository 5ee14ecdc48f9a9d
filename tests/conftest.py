"""
Pytest configuration and fixtures for the Core Lightning migrator tests.

This module provides real temporary SQLite files for the source side and
in-memory stand-ins for the PostgreSQL target and the bulk loader.
"""

import io
import re
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from rich.console import Console

from cln_migrator.core.exceptions import ExecutionError
from cln_migrator.loaders.base import Loader, LoadResult, LoadStatus
from cln_migrator.models.config import (
    ExistingDatabasePolicy,
    LoaderConfig,
    MigrationConfig,
    SourceConfig,
    TargetConfig,
)
from cln_migrator.orchestrator.planner import Confirmer
from cln_migrator.security.credentials import StaticCredentialBroker


_IDENT = re.compile(r'"((?:[^"]|"")*)"')


def _idents(description: str) -> List[str]:
    return [name.replace('""', '"') for name in _IDENT.findall(description)]


class FakeTarget:
    """In-memory PostgreSQL server that applies administrative statements."""

    def __init__(self, reachable: bool = True, createdb: bool = True):
        self.reachable = reachable
        self.createdb = createdb
        self.databases: Dict[str, Dict] = {}
        self.roles = {"postgres"}
        self.passwords: Dict[str, str] = {}
        self.statements: List[str] = []
        self.fail_on: Optional[str] = None

    def add_database(self, name: str, owner: str = "postgres",
                     tables: Optional[Dict[str, int]] = None):
        self.databases[name] = {"owner": owner, "tables": dict(tables or {})}

    def check_connectivity(self) -> bool:
        return self.reachable

    def server_version(self) -> str:
        return "PostgreSQL 16.2 on x86_64-pc-linux-gnu"

    def can_create_databases(self) -> bool:
        return self.createdb

    def database_exists(self, database: str) -> bool:
        return database in self.databases

    def role_exists(self, role: str) -> bool:
        return role in self.roles

    def database_owner(self, database: str) -> Optional[str]:
        return self.databases.get(database, {}).get("owner")

    def user_tables(self, database: str):
        return [("public", name) for name in sorted(self.databases[database]["tables"])]

    def database_has_data(self, database: str, tables=None) -> bool:
        return any(rows > 0 for rows in self.databases[database]["tables"].values())

    def execute_admin(self, statement, database: str = "postgres") -> None:
        description = statement.description
        self.statements.append(description)
        if self.fail_on and description.startswith(self.fail_on):
            raise ExecutionError(
                f"Statement failed: {description}",
                command=description,
                exit_status=1,
                output="ERROR:  permission denied",
            )

        names = _idents(description)
        if description.startswith("DROP DATABASE"):
            self.databases.pop(names[0], None)
        elif description.startswith("CREATE DATABASE"):
            self.add_database(names[0])
        elif description.startswith("CREATE ROLE"):
            self.roles.add(names[0])
            self.passwords[names[0]] = statement.params[0]
        elif description.startswith("ALTER ROLE"):
            self.passwords[names[0]] = statement.params[0]
        elif description.startswith("ALTER DATABASE"):
            self.databases[names[0]]["owner"] = names[1]


class FakeLoader(Loader):
    """Loader that fills the fake target instead of running pgloader."""

    name = "fake"

    def __init__(self, target: FakeTarget, succeed: bool = True,
                 available: bool = True, log_dir: Optional[Path] = None):
        super().__init__(LoaderConfig(name="fake", log_dir=log_dir))
        self.target = target
        self.succeed = succeed
        self.available = available
        self.calls: List[Dict] = []

    def check_available(self) -> bool:
        return self.available

    def version(self) -> Optional[str]:
        return "pgloader version 3.6.9" if self.available else None

    async def load(self, source_path, target, cast_policy, password=None, on_output=None):
        self.calls.append({
            "source_path": source_path,
            "target": target,
            "cast_policy": cast_policy,
            "password": password,
        })
        if on_output is not None:
            on_output("table name     errors       rows      bytes      total time")

        if self.succeed:
            self.target.databases[target.database]["tables"] = {"channels": 2, "vars": 5}
            return LoadResult(status=LoadStatus.COMPLETED, exit_status=0, command="pgloader cmd")

        # A failed load leaves a partially populated database behind.
        self.target.databases[target.database]["tables"] = {"vars": 5}
        log_path = Path(self.log_dir) / "pgloader_output_test.log"
        log_path.write_text("ERROR Database error 42P01: relation does not exist\n")
        return LoadResult(
            status=LoadStatus.FAILED,
            exit_status=12,
            command="pgloader cmd",
            log_path=str(log_path),
            output_tail="ERROR Database error 42P01: relation does not exist",
        )


class ScriptedConfirmer(Confirmer):
    """Confirmer with canned answers."""

    def __init__(self, answer: bool = True, typed: Optional[str] = None):
        self.answer = answer
        self.typed = typed
        self.questions: List[str] = []

    def confirm(self, question: str) -> bool:
        self.questions.append(question)
        return self.answer

    def confirm_typed(self, question: str, expected: str) -> bool:
        self.questions.append(question)
        return self.typed == expected


def create_lightning_db(path: Path, version: Optional[int] = 250,
                        rows: int = 3) -> Path:
    """Create a small SQLite file shaped like a lightningd wallet."""
    conn = sqlite3.connect(path)
    try:
        if version is not None:
            conn.execute("CREATE TABLE version (version INTEGER)")
            conn.execute("INSERT INTO version VALUES (?)", (version,))
        conn.execute("CREATE TABLE vars (name VARCHAR(32), val VARCHAR(255), intval INTEGER)")
        conn.execute("CREATE TABLE channels (id BIGSERIAL, peer_id BIGINT, scid TEXT)")
        for i in range(rows):
            conn.execute("INSERT INTO vars VALUES (?, ?, ?)", (f"var{i}", "x", i))
        conn.execute("INSERT INTO channels VALUES (1, 1, '103x1x0')")
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def valid_db(tmp_path) -> Path:
    """A valid lightningd SQLite database."""
    return create_lightning_db(tmp_path / "lightningd.sqlite3")


@pytest.fixture
def unversioned_db(tmp_path) -> Path:
    """A SQLite database without the version table."""
    return create_lightning_db(tmp_path / "other.sqlite3", version=None)


@pytest.fixture
def not_sqlite(tmp_path) -> Path:
    """A file that is not a SQLite database."""
    path = tmp_path / "notes.sqlite3"
    path.write_text("this is not a database\n" * 20)
    return path


@pytest.fixture
def make_config(valid_db, tmp_path):
    """Factory for MigrationConfig values pointing at the valid database."""
    def factory(source: Optional[Path] = None, database: str = "newdb",
                interactive: bool = False,
                existing_database: ExistingDatabasePolicy = ExistingDatabasePolicy.ASK,
                reset_password: bool = False, **target_kwargs) -> MigrationConfig:
        return MigrationConfig(
            source=SourceConfig(path=source or valid_db),
            target=TargetConfig(database=database, **target_kwargs),
            loader=LoaderConfig(log_dir=tmp_path / "logs"),
            existing_database=existing_database,
            interactive=interactive,
            reset_password=reset_password,
        )
    return factory


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def fake_loader(fake_target, tmp_path) -> FakeLoader:
    log_dir = tmp_path / "logs"
    log_dir.mkdir(exist_ok=True)
    return FakeLoader(fake_target, log_dir=log_dir)


@pytest.fixture
def credentials() -> StaticCredentialBroker:
    return StaticCredentialBroker(admin_password="adminpw", application_password="apppw")


@pytest.fixture
def quiet_console() -> Console:
    """Console writing to an in-memory buffer."""
    return Console(file=io.StringIO(), width=120)
