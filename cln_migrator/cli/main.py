"""
Main CLI entry point for the Core Lightning migrator.

This module provides the command-line interface using Click with Rich
formatting. Option values are resolved in order of precedence: command
line, environment, ``--config`` YAML file, built-in defaults.
"""

import asyncio
import logging
import sys
from typing import Any, Dict, Optional

import click
from click.core import ParameterSource
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from cln_migrator import __version__
from cln_migrator.core.error_handler import (
    ErrorContext,
    ErrorHandler,
    RecoveryStrategy,
    is_migrator_error,
)
from cln_migrator.core.exceptions import ConfigurationError
from cln_migrator.models.config import (
    ExistingDatabasePolicy,
    LoaderConfig,
    MigrationConfig,
    SourceConfig,
    TargetConfig,
)
from cln_migrator.orchestrator.orchestrator import MigrationOrchestrator
from cln_migrator.security.credentials import (
    InteractiveCredentialBroker,
    KeyringCredentialBroker,
    StaticCredentialBroker,
)
from cln_migrator.utils.helpers import load_config_file
from cln_migrator.utils.logging import setup_logging

console = Console()
logger = logging.getLogger("cln_migrator.cli")

# Keys accepted in the --config YAML file, by option name.
FILE_KEYS = {
    "user": "user",
    "superuser": "superuser",
    "host": "host",
    "port": "port",
    "socket": "socket",
    "connect_timeout": "connect_timeout",
    "existing_database": "existing_database",
    "reset_password": "reset_password",
    "non_interactive": "non_interactive",
    "install_missing": "install_missing",
    "log_dir": "log_dir",
    "prefetch_rows": "prefetch_rows",
    "pgloader": "pgloader",
    "use_keyring": "keyring",
}

RECOVERY_LABELS = {
    RecoveryStrategy.FIX_AND_RERUN: "fix the cause and rerun",
    RecoveryStrategy.INSPECT_LOG: "inspect the log",
    RecoveryStrategy.CONFIRM: "choose how to treat the existing database",
    RecoveryStrategy.MANUAL: "manual intervention",
    RecoveryStrategy.ABORT: "abort",
}


def migration_options(func):
    """Options shared by every command that targets a database."""
    options = [
        click.argument('sqlite_file', type=click.Path(dir_okay=False)),
        click.argument('pg_database'),
        click.option('--user', '-u', default='lightning', show_default=True,
                     envvar='CLN_MIGRATE_USER',
                     help='Application role lightningd connects as'),
        click.option('--superuser', '-s', default='postgres', show_default=True,
                     envvar='CLN_MIGRATE_SUPERUSER',
                     help='Administrative PostgreSQL user'),
        click.option('--superpass', '-S', default=None,
                     help='Administrative password (prefer CLN_MIGRATE_ADMIN_PASSWORD)'),
        click.option('--host', '-h', default='localhost', show_default=True,
                     envvar='PGHOST', help='PostgreSQL host'),
        click.option('--port', '-P', type=int, default=5432, show_default=True,
                     envvar='PGPORT', help='PostgreSQL port'),
        click.option('--socket', 'socket', default=None, envvar='CLN_MIGRATE_SOCKET',
                     help='UNIX socket directory or socket file'),
        click.option('--connect-timeout', type=int, default=10, show_default=True,
                     help='Connection timeout in seconds'),
        click.option('--recreate', is_flag=True,
                     help='Drop and recreate an existing database that holds data'),
        click.option('--skip-existing', is_flag=True,
                     help='Keep an existing database that holds data and skip the load'),
        click.option('--reset-password', is_flag=True,
                     help='Set a new password on an existing application role'),
        click.option('--non-interactive', is_flag=True, envvar='CLN_MIGRATE_NON_INTERACTIVE',
                     help='Never prompt; fail when a decision is needed'),
        click.option('--install-missing', is_flag=True,
                     help='Install pgloader with the system package manager if missing'),
        click.option('--keyring', 'use_keyring', is_flag=True,
                     help='Look passwords up in the system keyring first'),
        click.option('--pgloader', default=None, envvar='CLN_MIGRATE_PGLOADER',
                     help='Path to the pgloader executable'),
        click.option('--prefetch-rows', type=int, default=1000, show_default=True,
                     help='Rows pgloader reads ahead per batch'),
        click.option('--log-dir', type=click.Path(file_okay=False), default=None,
                     envvar='CLN_MIGRATE_LOG_DIR',
                     help='Directory for pgloader command and output files'),
        click.option('--log-file', type=click.Path(dir_okay=False), default=None,
                     help='Also write the session log to this file'),
        click.option('--log-format', type=click.Choice(['text', 'json'], case_sensitive=False),
                     default='text', show_default=True, envvar='CLN_MIGRATE_LOG_FORMAT',
                     help='Session log format; json writes one object per line'),
        click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False),
                     default=None, envvar='CLN_MIGRATE_CONFIG',
                     help='YAML file with option defaults'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _explicit(ctx: click.Context, name: str) -> bool:
    return ctx.get_parameter_source(name) not in (None, ParameterSource.DEFAULT)


def _resolve_options(ctx: click.Context, params: Dict[str, Any]) -> Dict[str, Any]:
    """Fill options left at their defaults from the --config file."""
    resolved = dict(params)
    if not params.get('config_file'):
        return resolved

    try:
        file_config = load_config_file(params['config_file'])
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read configuration file: {e}") from e
    if not isinstance(file_config, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    unknown = set(file_config) - set(FILE_KEYS.values())
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in configuration file: {', '.join(sorted(unknown))}"
        )

    for name, key in FILE_KEYS.items():
        if key in file_config and not _explicit(ctx, name):
            resolved[name] = file_config[key]
    return resolved


def build_config(ctx: click.Context, params: Dict[str, Any]) -> MigrationConfig:
    """Build the immutable MigrationConfig from resolved options."""
    options = _resolve_options(ctx, params)

    if options.get('recreate') and options.get('skip_existing'):
        raise ConfigurationError("--recreate and --skip-existing are mutually exclusive")
    if options.get('socket') and (
        ctx.get_parameter_source('host') == ParameterSource.COMMANDLINE
        or ctx.get_parameter_source('port') == ParameterSource.COMMANDLINE
    ):
        raise ConfigurationError("--socket cannot be combined with --host or --port")

    if options.get('recreate'):
        policy = ExistingDatabasePolicy.RECREATE
    elif options.get('skip_existing'):
        policy = ExistingDatabasePolicy.SKIP
    else:
        value = options.get('existing_database') or 'ask'
        try:
            policy = ExistingDatabasePolicy(value)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid existing_database policy '{value}'; expected ask, skip or recreate"
            ) from e

    try:
        return MigrationConfig(
            source=SourceConfig(path=options['sqlite_file']),
            target=TargetConfig(
                database=options['pg_database'],
                app_user=options['user'],
                admin_user=options['superuser'],
                host=options['host'],
                port=options['port'],
                socket_path=options.get('socket') or None,
                connect_timeout=options['connect_timeout'],
            ),
            loader=LoaderConfig(
                executable=options.get('pgloader'),
                prefetch_rows=options['prefetch_rows'],
                log_dir=options.get('log_dir'),
            ),
            existing_database=policy,
            interactive=not options.get('non_interactive'),
            reset_password=bool(options.get('reset_password')),
            install_missing_tools=bool(options.get('install_missing')),
            structured_logging=options.get('log_format') == 'json',
        )
    except ValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {messages}") from e


def build_credentials(config: MigrationConfig, superpass: Optional[str], use_keyring: bool):
    """Pick the credential broker for the run."""
    if config.interactive:
        broker = InteractiveCredentialBroker(
            console=console,
            admin_password=superpass,
            prompt_for_admin=not config.target.uses_socket
        )
    else:
        broker = StaticCredentialBroker.from_environment(admin_password=superpass)

    if use_keyring:
        return KeyringCredentialBroker(fallback=broker)
    return broker


def _run(ctx: click.Context, command: str, params: Dict[str, Any]):
    """Build the configuration and run one orchestrator operation."""
    handler = ErrorHandler(logger)
    try:
        setup_logging(
            level="DEBUG" if ctx.obj.get('verbose') else "INFO",
            log_file=params.get('log_file'),
            structured_logging=params.get('log_format') == 'json',
            console=Console(stderr=True)
        )
        config = build_config(ctx, params)

        if ctx.obj.get('verbose'):
            console.print(f"[dim]Source: {config.source.path}[/dim]")
            console.print(f"[dim]Target: {config.target.database} via {config.target.endpoint}[/dim]")
            console.print(f"[dim]Existing database policy: {config.existing_database.value}[/dim]")

        credentials = build_credentials(config, params.get('superpass'), params.get('use_keyring'))
        orchestrator = MigrationOrchestrator(console=console, credentials=credentials)
        return asyncio.run(getattr(orchestrator, command)(config))

    except click.Abort:
        console.print("[yellow]Migration cancelled by user[/yellow]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Migration cancelled by user[/yellow]")
        sys.exit(1)
    except Exception as e:
        if not is_migrator_error(e):
            console.print(f"[red]Unexpected error: {e}[/red]")
            if ctx.obj.get('verbose'):
                import traceback
                console.print(f"[dim]{traceback.format_exc()}[/dim]")
            sys.exit(1)

        error_info = handler.handle_error(e, ErrorContext(operation=command))
        display_error(error_info)
        sys.exit(1)


def display_error(error_info):
    """Render a categorized error with its remediation steps."""
    error = error_info.error
    text = Text()
    text.append(f"{error.message}\n", style="bold red")
    text.append(
        f"Category: {error_info.category.value} ({error_info.severity.value})\n", style="dim"
    )
    if error_info.recovery_strategies:
        strategies = ", ".join(
            RECOVERY_LABELS.get(strategy, strategy.value)
            for strategy in error_info.recovery_strategies
        )
        text.append(f"Recovery: {strategies}\n", style="dim")

    output = getattr(error, 'output', None)
    if output:
        text.append("\nLast output:\n", style="bold")
        text.append(f"{output}\n", style="dim")

    if error_info.remediation_steps:
        text.append("\nWhat to do:\n", style="bold yellow")
        for step in error_info.remediation_steps:
            text.append(f"  - {step}\n")

    if not error_info.safe_to_rerun:
        text.append(
            "\nDo not rerun until the log has been inspected.",
            style="bold red"
        )

    console.print(Panel(text, title=type(error).__name__, border_style="red"))


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def main(ctx: click.Context, version: bool, verbose: bool):
    """
    Core Lightning SQLite to PostgreSQL migrator

    Moves a lightningd SQLite wallet database into PostgreSQL, creates a
    least-privilege role for lightningd and hands it the database.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    if version:
        console.print(f"cln-migrate version {__version__}")
        sys.exit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@migration_options
@click.pass_context
def migrate(ctx: click.Context, **params):
    """Migrate SQLITE_FILE into the PostgreSQL database PG_DATABASE."""
    _run(ctx, 'run', params)


@main.command()
@migration_options
@click.pass_context
def check(ctx: click.Context, **params):
    """Run preflight checks only; nothing is changed."""
    _run(ctx, 'check', params)
    console.print("[green]Ready to migrate[/green]")


@main.command()
@migration_options
@click.pass_context
def plan(ctx: click.Context, **params):
    """Show what a migration would do, without doing it."""
    _run(ctx, 'plan', params)


if __name__ == '__main__':
    main()
