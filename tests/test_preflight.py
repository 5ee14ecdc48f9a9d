"""
Unit tests for preflight validation.
"""

from unittest.mock import Mock

import pytest

from cln_migrator.core.exceptions import (
    SourceInvalidFormat,
    SourceUnreadable,
    TargetUnreachable,
    ToolMissing,
)
from cln_migrator.tools.installer import ToolInstaller
from cln_migrator.validation.preflight import PreflightValidator

from conftest import FakeLoader


def make_validator(loader, target, installer=None):
    return PreflightValidator(
        loader=loader,
        target_factory=lambda config: target,
        installer=installer or ToolInstaller(managers=[])
    )


class TestPreflightValidator:
    """Test cases for PreflightValidator."""

    @pytest.mark.asyncio
    async def test_ready_report(self, make_config, fake_target, fake_loader):
        report = await make_validator(fake_loader, fake_target).validate(make_config())

        assert report.is_ready
        assert report.schema_version == 250
        assert report.tables == ["channels", "vars", "version"]
        assert report.server_version.startswith("PostgreSQL 16")
        assert report.tool_versions["fake"] == "pgloader version 3.6.9"
        assert [check.name for check in report.checks] == [
            "fake installed", "source format", "target connectivity", "target privileges",
        ]

    @pytest.mark.asyncio
    async def test_missing_tool_checked_first(self, make_config, not_sqlite, fake_target, tmp_path):
        loader = FakeLoader(fake_target, available=False, log_dir=tmp_path)
        target = Mock()

        with pytest.raises(ToolMissing) as exc_info:
            await make_validator(loader, target).validate(make_config(source=not_sqlite))

        assert exc_info.value.tool == "fake"
        target.check_connectivity.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_pgloader_carries_install_hints(self, make_config, fake_target, tmp_path):
        loader = FakeLoader(fake_target, available=False, log_dir=tmp_path)
        loader.name = "pgloader"

        with pytest.raises(ToolMissing) as exc_info:
            await make_validator(loader, fake_target).validate(make_config())

        assert any("apt-get install pgloader" in hint for hint in exc_info.value.install_hints)

    @pytest.mark.asyncio
    async def test_install_missing_invokes_installer(self, make_config, fake_target, tmp_path):
        loader = FakeLoader(fake_target, available=False, log_dir=tmp_path)
        installer = Mock(spec=ToolInstaller)
        installer.install.return_value = "/usr/bin/fake"
        config = make_config().model_copy(update={"install_missing_tools": True})

        report = await make_validator(loader, fake_target, installer).validate(config)

        installer.install.assert_called_once_with("fake")
        assert report.is_ready

    @pytest.mark.asyncio
    async def test_unreadable_source(self, make_config, tmp_path, fake_target, fake_loader):
        with pytest.raises(SourceUnreadable) as exc_info:
            await make_validator(fake_loader, fake_target).validate(
                make_config(source=tmp_path / "missing.sqlite3")
            )

        assert exc_info.value.failed_checks == ["source readable"]

    @pytest.mark.asyncio
    async def test_not_a_database(self, make_config, not_sqlite, fake_target, fake_loader):
        with pytest.raises(SourceInvalidFormat):
            await make_validator(fake_loader, fake_target).validate(make_config(source=not_sqlite))

    @pytest.mark.asyncio
    async def test_missing_version_table(self, make_config, unversioned_db, fake_target, fake_loader):
        with pytest.raises(SourceInvalidFormat) as exc_info:
            await make_validator(fake_loader, fake_target).validate(
                make_config(source=unversioned_db)
            )

        assert exc_info.value.failed_checks == ["source schema version"]

    @pytest.mark.asyncio
    async def test_target_not_reachable(self, make_config, fake_target, fake_loader):
        fake_target.reachable = False

        with pytest.raises(TargetUnreachable) as exc_info:
            await make_validator(fake_loader, fake_target).validate(make_config())

        assert exc_info.value.details["user"] == "postgres"

    @pytest.mark.asyncio
    async def test_admin_without_createdb(self, make_config, fake_target, fake_loader):
        fake_target.createdb = False

        with pytest.raises(TargetUnreachable) as exc_info:
            await make_validator(fake_loader, fake_target).validate(make_config())

        assert "CREATEDB" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_default_target_uses_admin_password(self, make_config, credentials, fake_loader):
        validator = PreflightValidator(loader=fake_loader, credentials=credentials)

        target = validator.target_factory(make_config())

        assert target._password == "adminpw"
        assert target.config.admin_user == "postgres"
