"""
Base classes for bulk loaders.

A loader moves schema and rows from the source SQLite file into the
target PostgreSQL database under a type-cast policy. The orchestrator
only depends on this narrow contract, so the loader can be swapped
without touching the plan or the executor.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from cln_migrator.models.config import CastPolicy, LoaderConfig, TargetConfig
from cln_migrator.utils.helpers import mask_dsn, quote_userinfo


OutputCallback = Callable[[str], None]


class LoadStatus(str, Enum):
    """Outcome of a bulk load."""
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class LoadTarget:
    """Where the loader writes to, and as whom.

    The password is never rendered into the connection URI; loaders
    hand it to their child process through a scoped environment.
    """
    database: str
    user: str
    host: str
    port: int
    socket_dir: Optional[str] = None

    @classmethod
    def from_config(cls, config: TargetConfig) -> "LoadTarget":
        return cls(
            database=config.database,
            user=config.admin_user,
            host=config.host,
            port=config.effective_port,
            socket_dir=config.socket_directory,
        )

    def uri(self, password: Optional[str] = None) -> str:
        """Connection URI in the postgresql:// form."""
        userinfo = quote_userinfo(self.user)
        if password:
            userinfo += ":" + quote_userinfo(password)
        if self.socket_dir:
            netloc = f"unix:{self.socket_dir}:{self.port}"
        else:
            netloc = f"{self.host}:{self.port}"
        return f"postgresql://{userinfo}@{netloc}/{self.database}"

    def display_uri(self, password: Optional[str] = None) -> str:
        return mask_dsn(self.uri(password))


@dataclass
class LoadResult:
    """Result of a bulk load."""
    status: LoadStatus
    exit_status: int
    command: str
    duration: float = 0.0
    log_path: Optional[str] = None
    output_tail: str = ""

    @property
    def is_successful(self) -> bool:
        return self.status == LoadStatus.COMPLETED and self.exit_status == 0


class Loader(ABC):
    """Abstract base class for bulk loaders."""

    name: str = "loader"

    def __init__(self, config: LoaderConfig):
        self.config = config

    @property
    def log_dir(self) -> Optional[Path]:
        return self.config.log_dir

    @abstractmethod
    def check_available(self) -> bool:
        """Check whether the loader can run on this host."""
        pass

    @abstractmethod
    def version(self) -> Optional[str]:
        """Return the loader's version string, None if unknown."""
        pass

    @abstractmethod
    async def load(
        self,
        source_path: Path,
        target: LoadTarget,
        cast_policy: CastPolicy,
        password: Optional[str] = None,
        on_output: Optional[OutputCallback] = None
    ) -> LoadResult:
        """Load schema and rows from the source into the target.

        Args:
            source_path: Path to the SQLite database
            target: Target database descriptor
            cast_policy: Type casts applied while creating tables
            password: Password for the target user
            on_output: Called with every line the loader prints

        Returns:
            LoadResult; a failed load keeps its log file
        """
        pass

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"
