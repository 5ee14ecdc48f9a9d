"""
Tests for the cln-migrate CLI.

The orchestrator is patched out, so these tests cover option parsing,
configuration precedence and error rendering only.
"""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from cln_migrator import __version__
from cln_migrator.cli.main import main
from cln_migrator.core.exceptions import ConfirmationRequired, ExecutionError
from cln_migrator.models.config import ExistingDatabasePolicy
from cln_migrator.security.credentials import (
    InteractiveCredentialBroker,
    KeyringCredentialBroker,
    StaticCredentialBroker,
)

ENV_VARS = [
    "PGHOST", "PGPORT", "CLN_MIGRATE_USER", "CLN_MIGRATE_SUPERUSER", "CLN_MIGRATE_SOCKET",
    "CLN_MIGRATE_NON_INTERACTIVE", "CLN_MIGRATE_PGLOADER", "CLN_MIGRATE_LOG_DIR",
    "CLN_MIGRATE_CONFIG",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def orchestrator():
    with patch("cln_migrator.cli.main.MigrationOrchestrator") as cls:
        instance = cls.return_value
        instance.run = AsyncMock()
        instance.check = AsyncMock()
        instance.plan = AsyncMock()
        yield cls


def passed_config(method):
    return method.call_args.args[0]


class TestCLI:
    """Test CLI functionality."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_version_flag(self):
        result = self.runner.invoke(main, ['--version'])

        assert result.exit_code == 0
        assert f"cln-migrate version {__version__}" in result.output

    def test_no_subcommand_shows_help(self):
        result = self.runner.invoke(main, [])

        assert result.exit_code == 0
        assert "migrate" in result.output
        assert "check" in result.output
        assert "plan" in result.output

    def test_migrate_requires_arguments(self):
        result = self.runner.invoke(main, ['migrate'])

        assert result.exit_code == 2


class TestMigrateCommand:
    """Test migrate command option handling."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_defaults(self, orchestrator, valid_db):
        result = self.runner.invoke(main, ['migrate', str(valid_db), 'lightningd'])

        assert result.exit_code == 0, result.output
        config = passed_config(orchestrator.return_value.run)
        assert config.source.path == valid_db
        assert config.target.database == "lightningd"
        assert config.target.app_user == "lightning"
        assert config.target.admin_user == "postgres"
        assert config.target.host == "localhost"
        assert config.existing_database == ExistingDatabasePolicy.ASK
        assert config.interactive
        credentials = orchestrator.call_args.kwargs["credentials"]
        assert isinstance(credentials, InteractiveCredentialBroker)

    def test_flags(self, orchestrator, valid_db, tmp_path):
        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd',
            '--user', 'cln', '--superuser', 'admin', '--port', '5433',
            '--recreate', '--reset-password', '--non-interactive',
            '--prefetch-rows', '500', '--log-dir', str(tmp_path),
        ])

        assert result.exit_code == 0, result.output
        config = passed_config(orchestrator.return_value.run)
        assert config.target.app_user == "cln"
        assert config.target.admin_user == "admin"
        assert config.target.port == 5433
        assert config.existing_database == ExistingDatabasePolicy.RECREATE
        assert config.reset_password
        assert not config.interactive
        assert config.loader.prefetch_rows == 500
        assert isinstance(orchestrator.call_args.kwargs["credentials"], StaticCredentialBroker)

    def test_socket_option(self, orchestrator, valid_db):
        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--socket', '/tmp/.s.PGSQL.5433',
        ])

        assert result.exit_code == 0, result.output
        config = passed_config(orchestrator.return_value.run)
        assert config.target.socket_directory == "/tmp"
        assert config.target.effective_port == 5433

    def test_keyring_wraps_broker(self, orchestrator, valid_db):
        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--keyring', '--non-interactive',
        ])

        assert result.exit_code == 0, result.output
        credentials = orchestrator.call_args.kwargs["credentials"]
        assert isinstance(credentials, KeyringCredentialBroker)
        assert isinstance(credentials.fallback, StaticCredentialBroker)

    def test_environment_overrides_defaults(self, orchestrator, valid_db):
        result = self.runner.invoke(
            main, ['migrate', str(valid_db), 'lightningd'],
            env={"PGHOST": "db.internal", "CLN_MIGRATE_USER": "cln"}
        )

        assert result.exit_code == 0, result.output
        config = passed_config(orchestrator.return_value.run)
        assert config.target.host == "db.internal"
        assert config.target.app_user == "cln"

    def test_json_log_format(self, orchestrator, valid_db):
        with patch("cln_migrator.cli.main.setup_logging") as mock_setup:
            result = self.runner.invoke(main, [
                'migrate', str(valid_db), 'lightningd', '--log-format', 'json',
            ])

        assert result.exit_code == 0, result.output
        assert mock_setup.call_args.kwargs["structured_logging"] is True
        assert passed_config(orchestrator.return_value.run).structured_logging

    def test_text_log_format_by_default(self, orchestrator, valid_db):
        with patch("cln_migrator.cli.main.setup_logging") as mock_setup:
            result = self.runner.invoke(main, ['migrate', str(valid_db), 'lightningd'])

        assert result.exit_code == 0, result.output
        assert mock_setup.call_args.kwargs["structured_logging"] is False
        assert not passed_config(orchestrator.return_value.run).structured_logging

    def test_recreate_and_skip_conflict(self, orchestrator, valid_db):
        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--recreate', '--skip-existing',
        ])

        assert result.exit_code == 1
        assert "mutually exclusive" in result.output
        orchestrator.return_value.run.assert_not_called()

    def test_socket_and_host_conflict(self, orchestrator, valid_db):
        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--socket', '/tmp', '--host', 'db',
        ])

        assert result.exit_code == 1
        assert "--socket cannot be combined" in result.output

    def test_identifier_too_long(self, orchestrator, valid_db):
        result = self.runner.invoke(main, ['migrate', str(valid_db), 'x' * 64])

        assert result.exit_code == 1
        assert "ConfigurationError" in result.output
        orchestrator.return_value.run.assert_not_called()

    def test_confirmation_required_exit_code(self, orchestrator, valid_db):
        orchestrator.return_value.run.side_effect = ConfirmationRequired(
            "Database 'lightningd' already holds data",
            details={"options": ["--recreate", "--skip-existing"]}
        )

        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--non-interactive',
        ])

        assert result.exit_code == 1
        assert "already holds data" in result.output
        assert "--skip-existing" in result.output
        assert "Recovery: choose how to treat the existing database" in result.output

    def test_partial_load_warns_against_rerun(self, orchestrator, valid_db):
        orchestrator.return_value.run.side_effect = ExecutionError(
            "Data migration failed (exit code 12)",
            step="load-schema-and-data",
            exit_status=12,
            log_path="/tmp/pgloader_output_x.log",
            details={"partial_load": True},
        )

        result = self.runner.invoke(main, ['migrate', str(valid_db), 'lightningd'])

        assert result.exit_code == 1
        assert "pgloader_output_x.log" in result.output
        assert "Do not rerun" in result.output
        assert "Recovery: inspect the log, manual intervention" in result.output

    def test_unexpected_error(self, orchestrator, valid_db):
        orchestrator.return_value.run.side_effect = RuntimeError("kaboom")

        result = self.runner.invoke(main, ['migrate', str(valid_db), 'lightningd'])

        assert result.exit_code == 1
        assert "Unexpected error: kaboom" in result.output


class TestConfigFile:
    """Test --config YAML handling."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_file_fills_defaults(self, orchestrator, valid_db, tmp_path):
        config_file = tmp_path / "migrate.yaml"
        config_file.write_text(
            "user: cln\nport: 6432\nexisting_database: skip\nnon_interactive: true\n"
        )

        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--config', str(config_file),
        ])

        assert result.exit_code == 0, result.output
        config = passed_config(orchestrator.return_value.run)
        assert config.target.app_user == "cln"
        assert config.target.port == 6432
        assert config.existing_database == ExistingDatabasePolicy.SKIP
        assert not config.interactive

    def test_command_line_beats_file(self, orchestrator, valid_db, tmp_path):
        config_file = tmp_path / "migrate.yaml"
        config_file.write_text("user: cln\n")

        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--config', str(config_file), '-u', 'other',
        ])

        assert result.exit_code == 0, result.output
        assert passed_config(orchestrator.return_value.run).target.app_user == "other"

    def test_environment_beats_file(self, orchestrator, valid_db, tmp_path):
        config_file = tmp_path / "migrate.yaml"
        config_file.write_text("host: from-file\n")

        result = self.runner.invoke(
            main, ['migrate', str(valid_db), 'lightningd', '--config', str(config_file)],
            env={"PGHOST": "from-env"}
        )

        assert result.exit_code == 0, result.output
        assert passed_config(orchestrator.return_value.run).target.host == "from-env"

    def test_unknown_key_rejected(self, orchestrator, valid_db, tmp_path):
        config_file = tmp_path / "migrate.yaml"
        config_file.write_text("password: hunter2\n")

        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--config', str(config_file),
        ])

        assert result.exit_code == 1
        assert "Unknown keys" in result.output

    def test_invalid_policy_rejected(self, orchestrator, valid_db, tmp_path):
        config_file = tmp_path / "migrate.yaml"
        config_file.write_text("existing_database: sometimes\n")

        result = self.runner.invoke(main, [
            'migrate', str(valid_db), 'lightningd', '--config', str(config_file),
        ])

        assert result.exit_code == 1
        assert "Invalid existing_database policy" in result.output


class TestOtherCommands:
    """Test check and plan commands."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_check(self, orchestrator, valid_db):
        result = self.runner.invoke(main, ['check', str(valid_db), 'lightningd'])

        assert result.exit_code == 0, result.output
        assert "Ready to migrate" in result.output
        orchestrator.return_value.check.assert_awaited_once()
        orchestrator.return_value.run.assert_not_called()

    def test_plan(self, orchestrator, valid_db):
        result = self.runner.invoke(main, ['plan', str(valid_db), 'lightningd', '--skip-existing'])

        assert result.exit_code == 0, result.output
        config = passed_config(orchestrator.return_value.plan)
        assert config.existing_database == ExistingDatabasePolicy.SKIP
        orchestrator.return_value.run.assert_not_called()
