"""
Preflight validation for a migration run.

Every probe here is read-only. Checks run in a fixed order (tools,
source, target) and the first failing group raises, so nothing on the
target is ever touched when the inputs are unusable.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from cln_migrator.core.exceptions import (
    SourceInvalidFormat,
    SourceUnreadable,
    TargetUnreachable,
    ToolMissing,
)
from cln_migrator.database.postgres_target import PostgresTarget
from cln_migrator.database.sqlite_source import SQLiteSource
from cln_migrator.loaders.base import Loader
from cln_migrator.models.config import MigrationConfig
from cln_migrator.security.credentials import CredentialBroker
from cln_migrator.tools.installer import ToolInstaller

logger = logging.getLogger(__name__)


class CheckResult(str, Enum):
    """Preflight check outcome"""
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


@dataclass
class PreflightCheck:
    """Result of a single preflight check"""
    name: str
    result: CheckResult
    message: str
    details: Optional[Dict[str, Any]] = None
    remediation: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.result != CheckResult.FAILED


@dataclass
class ReadinessReport:
    """What preflight learned about the source, the target and the tools."""
    source_path: str
    schema_version: Optional[int] = None
    tables: List[str] = field(default_factory=list)
    server_version: Optional[str] = None
    tool_versions: Dict[str, Optional[str]] = field(default_factory=dict)
    checks: List[PreflightCheck] = field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return all(check.passed for check in self.checks)

    def add(self, check: PreflightCheck) -> PreflightCheck:
        self.checks.append(check)
        level = logging.INFO if check.passed else logging.ERROR
        logger.log(level, f"Preflight {check.name}: {check.message}")
        return check


TargetFactory = Callable[[MigrationConfig], PostgresTarget]
SourceFactory = Callable[..., SQLiteSource]


class PreflightValidator:
    """
    Verifies that a migration can start.

    Raises one of SourceUnreadable, SourceInvalidFormat,
    TargetUnreachable or ToolMissing on the first failing group of
    checks; otherwise returns a ReadinessReport.
    """

    def __init__(
        self,
        loader: Loader,
        credentials: Optional[CredentialBroker] = None,
        target_factory: Optional[TargetFactory] = None,
        source_factory: SourceFactory = SQLiteSource,
        installer: Optional[ToolInstaller] = None
    ):
        self.loader = loader
        self.credentials = credentials
        self.target_factory = target_factory or self._default_target
        self.source_factory = source_factory
        self.installer = installer or ToolInstaller()

    def _default_target(self, config: MigrationConfig) -> PostgresTarget:
        password = None
        if self.credentials is not None:
            password = self.credentials.admin_password(config.target.admin_user)
        return PostgresTarget(config.target, password=password)

    async def validate(self, config: MigrationConfig) -> ReadinessReport:
        """
        Run every preflight check.

        Args:
            config: Migration configuration

        Returns:
            ReadinessReport describing the source, target and tools
        """
        report = ReadinessReport(source_path=str(config.source.path))

        await self._check_tools(config, report)
        await self._check_source(config, report)
        await self._check_target(config, report)

        logger.info(f"Preflight passed ({len(report.checks)} checks)")
        return report

    async def _check_tools(self, config: MigrationConfig, report: ReadinessReport) -> None:
        tool = self.loader.name

        if not self.loader.check_available():
            if not config.install_missing_tools:
                error = self.installer.missing(tool)
                report.add(PreflightCheck(
                    name=f"{tool} installed",
                    result=CheckResult.FAILED,
                    message=f"{tool} is not on PATH",
                    remediation="; ".join(error.install_hints)
                ))
                raise error

            logger.warning(f"{tool} is not installed. Attempting to install...")
            try:
                await asyncio.to_thread(self.installer.install, tool)
            except ToolMissing as e:
                report.add(PreflightCheck(
                    name=f"{tool} installed",
                    result=CheckResult.FAILED,
                    message=f"Automatic installation of {tool} failed",
                    remediation="; ".join(e.install_hints)
                ))
                raise

        version = await asyncio.to_thread(self.loader.version)
        report.tool_versions[tool] = version
        report.add(PreflightCheck(
            name=f"{tool} installed",
            result=CheckResult.PASSED,
            message=f"{tool} is available: {version or 'unknown version'}"
        ))

    async def _check_source(self, config: MigrationConfig, report: ReadinessReport) -> None:
        path = config.source.path
        source = self.source_factory(path)

        if not source.is_readable():
            report.add(PreflightCheck(
                name="source readable",
                result=CheckResult.FAILED,
                message=f"SQLite file not found or not readable: {path}",
                remediation="Check the path and the file permissions"
            ))
            raise SourceUnreadable(
                f"SQLite file not found or not readable: {path}",
                failed_checks=["source readable"],
                details={"path": str(path)}
            )

        if not await asyncio.to_thread(source.is_valid):
            report.add(PreflightCheck(
                name="source format",
                result=CheckResult.FAILED,
                message=f"Invalid SQLite database file: {path}"
            ))
            raise SourceInvalidFormat(
                f"Invalid SQLite database file: {path}",
                failed_checks=["source format"],
                details={"path": str(path)}
            )

        version = await asyncio.to_thread(source.schema_version)
        if version is None:
            report.add(PreflightCheck(
                name="source schema version",
                result=CheckResult.FAILED,
                message="No usable Core Lightning version found in the SQLite file"
            ))
            raise SourceInvalidFormat(
                f"Cannot determine the Core Lightning schema version of {path}",
                failed_checks=["source schema version"],
                details={"path": str(path)}
            )

        report.schema_version = version
        report.tables = await asyncio.to_thread(source.list_tables)
        report.add(PreflightCheck(
            name="source format",
            result=CheckResult.PASSED,
            message=(
                f"SQLite database is valid (schema version {version}, "
                f"{len(report.tables)} tables)"
            ),
            details={"schema_version": version, "tables": len(report.tables)}
        ))

    async def _check_target(self, config: MigrationConfig, report: ReadinessReport) -> None:
        target_config = config.target
        target = self.target_factory(config)

        if not await asyncio.to_thread(target.check_connectivity):
            message = (
                f"Cannot connect to PostgreSQL via {target_config.endpoint} "
                f"as user '{target_config.admin_user}'"
            )
            report.add(PreflightCheck(
                name="target connectivity",
                result=CheckResult.FAILED,
                message=message,
                remediation="Check that the server is running and the credentials are correct"
            ))
            raise TargetUnreachable(
                message,
                failed_checks=["target connectivity"],
                details={
                    "endpoint": target_config.endpoint,
                    "user": target_config.admin_user,
                }
            )

        report.server_version = await asyncio.to_thread(target.server_version)
        report.add(PreflightCheck(
            name="target connectivity",
            result=CheckResult.PASSED,
            message=f"Connected to {report.server_version}"
        ))

        if not await asyncio.to_thread(target.can_create_databases):
            message = f"User '{target_config.admin_user}' does not have CREATEDB privilege"
            report.add(PreflightCheck(
                name="target privileges",
                result=CheckResult.FAILED,
                message=message,
                remediation=f"ALTER ROLE {target_config.admin_user} CREATEDB;"
            ))
            raise TargetUnreachable(
                message,
                failed_checks=["target privileges"],
                details={"user": target_config.admin_user}
            )

        report.add(PreflightCheck(
            name="target privileges",
            result=CheckResult.PASSED,
            message=f"User '{target_config.admin_user}' can create databases"
        ))
