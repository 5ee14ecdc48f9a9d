"""
Configuration models for the Core Lightning migrator.

This module defines immutable Pydantic models describing the source
SQLite file, the target PostgreSQL server, the bulk loader settings,
and how the run treats an already existing target database. A single
MigrationConfig value is built once and handed to every component.
"""

import re
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, ConfigDict


DEFAULT_SOCKET_DIR = "/var/run/postgresql"
DEFAULT_PORT = 5432

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1 bytes.
MAX_IDENTIFIER_LENGTH = 63

_SOCKET_FILE_PATTERN = re.compile(r"^\.s\.PGSQL\.(\d+)$")


class ExistingDatabasePolicy(str, Enum):
    """What to do when the target database already holds data."""
    ASK = "ask"
    SKIP = "skip"
    RECREATE = "recreate"


class CastRule(BaseModel):
    """A single type cast handed to the bulk loader."""
    source_type: str
    target_type: str
    drop_typemod: bool = False

    model_config = ConfigDict(frozen=True)

    def render(self) -> str:
        """Render the rule in the loader's CAST clause syntax."""
        rule = f"type {self.source_type} to {self.target_type}"
        if self.drop_typemod:
            rule += " drop typemod"
        return rule


def _default_cast_rules() -> Tuple[CastRule, ...]:
    return (
        CastRule(source_type="integer", target_type="bigint", drop_typemod=True),
        CastRule(source_type="text", target_type="varchar", drop_typemod=True),
        CastRule(source_type="blob", target_type="bytea"),
    )


class CastPolicy(BaseModel):
    """Type-cast policy applied while loading the SQLite schema."""
    rules: Tuple[CastRule, ...] = Field(default_factory=_default_cast_rules)

    model_config = ConfigDict(frozen=True)

    def render(self) -> List[str]:
        """Render every rule in order."""
        return [rule.render() for rule in self.rules]


class SourceConfig(BaseModel):
    """Location of the Core Lightning SQLite database."""
    path: Path

    model_config = ConfigDict(frozen=True)

    @field_validator('path', mode='before')
    @classmethod
    def path_must_not_be_empty(cls, v):
        if v is None or not str(v).strip():
            raise ValueError('SQLite file path is required')
        return Path(str(v)).expanduser()


class TargetConfig(BaseModel):
    """Connection descriptor for the PostgreSQL target."""
    database: str
    app_user: str = "lightning"
    admin_user: str = "postgres"
    host: str = "localhost"
    port: int = DEFAULT_PORT
    socket_path: Optional[str] = None
    connect_timeout: int = Field(default=10, ge=1, le=300)

    model_config = ConfigDict(frozen=True)

    @field_validator('database', 'app_user', 'admin_user')
    @classmethod
    def identifier_must_be_valid(cls, v, info):
        if not v or not v.strip():
            raise ValueError(f'{info.field_name} cannot be empty')
        if len(v.encode('utf-8')) > MAX_IDENTIFIER_LENGTH:
            raise ValueError(
                f'{info.field_name} must be at most {MAX_IDENTIFIER_LENGTH} bytes'
            )
        return v.strip()

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not (1 <= v <= 65535):
            raise ValueError('Port must be between 1 and 65535')
        return v

    @property
    def uses_socket(self) -> bool:
        return self.socket_path is not None

    @property
    def socket_directory(self) -> Optional[str]:
        """Directory holding the server socket.

        Accepts either the directory or the socket file itself
        (``/tmp/.s.PGSQL.5432``).
        """
        if self.socket_path is None:
            return None
        path = Path(self.socket_path)
        if _SOCKET_FILE_PATTERN.match(path.name):
            return str(path.parent)
        return str(path)

    @property
    def effective_port(self) -> int:
        if self.socket_path is not None:
            match = _SOCKET_FILE_PATTERN.match(Path(self.socket_path).name)
            if match:
                return int(match.group(1))
        return self.port

    @property
    def endpoint(self) -> str:
        """Human readable description of where the server is reached."""
        if self.uses_socket:
            return f"UNIX socket ({self.socket_directory})"
        return f"TCP ({self.host}:{self.port})"

    def wallet_settings(self) -> List[str]:
        """lightning.conf wallet lines pointing at the migrated database."""
        settings = [
            f"wallet=postgres://{self.app_user}:your_password@"
            f"{self.host}:{self.port}/{self.database}"
        ]
        if self.uses_socket:
            settings.append(
                f"wallet=postgres://{self.app_user}@/{self.database}"
                f"?host={self.socket_directory}"
            )
        return settings


class LoaderConfig(BaseModel):
    """Bulk loader settings."""
    name: str = "pgloader"
    executable: Optional[str] = None
    prefetch_rows: int = Field(default=1000, ge=1)
    cast_policy: CastPolicy = Field(default_factory=CastPolicy)
    log_dir: Optional[Path] = None

    model_config = ConfigDict(frozen=True)


class MigrationConfig(BaseModel):
    """Complete, immutable migration configuration."""
    source: SourceConfig
    target: TargetConfig
    loader: LoaderConfig = Field(default_factory=LoaderConfig)
    existing_database: ExistingDatabasePolicy = ExistingDatabasePolicy.ASK
    interactive: bool = True
    reset_password: bool = False
    install_missing_tools: bool = False
    structured_logging: bool = False

    model_config = ConfigDict(frozen=True)
