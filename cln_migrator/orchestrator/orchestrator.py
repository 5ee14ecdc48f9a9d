"""
Migration orchestrator for the Core Lightning migrator.

This module ties together preflight validation, plan building and step
execution, and renders progress and results with rich.
"""

import asyncio
import logging
import sqlite3
from typing import Callable, List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table

from cln_migrator.core.exceptions import MigratorError
from cln_migrator.database.postgres_target import PostgresTarget
from cln_migrator.database.sqlite_source import SQLiteSource
from cln_migrator.loaders.base import Loader
from cln_migrator.loaders.factory import LoaderFactory
from cln_migrator.models.config import MigrationConfig
from cln_migrator.models.session import (
    MigrationPlan,
    MigrationSession,
    MigrationStep,
    StepId,
    StepStatus,
)
from cln_migrator.orchestrator.executor import StepExecutor
from cln_migrator.orchestrator.planner import Confirmer, ConsoleConfirmer, PlanBuilder
from cln_migrator.security.credentials import (
    CredentialBroker,
    InteractiveCredentialBroker,
    StaticCredentialBroker,
)
from cln_migrator.tools.installer import ToolInstaller
from cln_migrator.utils.helpers import format_duration, generate_session_id
from cln_migrator.validation.preflight import PreflightValidator, ReadinessReport

logger = logging.getLogger(__name__)

TargetFactory = Callable[[MigrationConfig, Optional[str]], PostgresTarget]

STATUS_STYLES = {
    StepStatus.PENDING: "yellow",
    StepStatus.RUNNING: "blue",
    StepStatus.COMPLETED: "green",
    StepStatus.FAILED: "red",
    StepStatus.SKIPPED: "dim",
}


def _default_target_factory(config: MigrationConfig, password: Optional[str]) -> PostgresTarget:
    return PostgresTarget(config.target, password=password)


class MigrationOrchestrator:
    """
    Runs a migration: preflight, then planning, then execution.

    Collaborators can be injected for testing; by default the loader
    comes from the LoaderFactory, the target client is a PostgresTarget
    and credentials are prompted for when the run is interactive.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        credentials: Optional[CredentialBroker] = None,
        confirmer: Optional[Confirmer] = None,
        loader: Optional[Loader] = None,
        target_factory: Optional[TargetFactory] = None,
        installer: Optional[ToolInstaller] = None,
        show_loader_output: bool = True
    ):
        self.console = console or Console()
        self.credentials = credentials
        self.confirmer = confirmer
        self.loader = loader
        self.target_factory = target_factory or _default_target_factory
        self.installer = installer or ToolInstaller()
        self.show_loader_output = show_loader_output

    def _credentials_for(self, config: MigrationConfig) -> CredentialBroker:
        if self.credentials is None:
            if config.interactive:
                self.credentials = InteractiveCredentialBroker(
                    console=self.console,
                    prompt_for_admin=not config.target.uses_socket
                )
            else:
                self.credentials = StaticCredentialBroker.from_environment()
        return self.credentials

    def _loader_for(self, config: MigrationConfig) -> Loader:
        if self.loader is None:
            self.loader = LoaderFactory.create_loader(config.loader)
        return self.loader

    def _confirmer_for(self, config: MigrationConfig) -> Optional[Confirmer]:
        if not config.interactive:
            return None
        if self.confirmer is None:
            self.confirmer = ConsoleConfirmer(self.console)
        return self.confirmer

    def _open_target(self, config: MigrationConfig) -> PostgresTarget:
        credentials = self._credentials_for(config)
        password = credentials.admin_password(config.target.admin_user)
        return self.target_factory(config, password)

    def _forget_secrets(self) -> None:
        if self.credentials is not None:
            self.credentials.forget()

    async def check(self, config: MigrationConfig) -> ReadinessReport:
        """
        Run preflight validation only.

        Raises:
            PreflightError: If the source or target is unusable
            ToolMissing: If the loader is not installed
        """
        try:
            return await self._check(config)
        finally:
            self._forget_secrets()

    async def _check(self, config: MigrationConfig) -> ReadinessReport:
        validator = PreflightValidator(
            loader=self._loader_for(config),
            credentials=self._credentials_for(config),
            target_factory=self._open_target,
            installer=self.installer
        )

        self.console.print(Panel.fit(
            f"[bold blue]Preflight[/bold blue]\n"
            f"Source: [bold]{config.source.path}[/bold]\n"
            f"Target: [bold]{config.target.database}[/bold] via {config.target.endpoint}",
            title="Core Lightning SQLite to PostgreSQL",
            border_style="blue"
        ))

        report = await validator.validate(config)
        self.display_report(report)
        return report

    async def plan(self, config: MigrationConfig) -> Tuple[ReadinessReport, MigrationPlan]:
        """
        Run preflight and build the plan without executing it.

        Raises:
            ConfirmationRequired: If the existing database needs a decision
        """
        try:
            return await self._plan(config)
        finally:
            self._forget_secrets()

    async def _plan(self, config: MigrationConfig) -> Tuple[ReadinessReport, MigrationPlan]:
        report = await self._check(config)
        builder = PlanBuilder(self._open_target(config))
        plan = await builder.build(config, self._confirmer_for(config))
        self.display_plan(plan)
        return report, plan

    async def run(self, config: MigrationConfig) -> MigrationSession:
        """
        Run the full migration.

        Returns:
            The completed migration session

        Raises:
            MigratorError: On the first failing preflight check or step
        """
        try:
            return await self._run(config)
        finally:
            # Secrets live only for the duration of one run.
            self._forget_secrets()

    async def _run(self, config: MigrationConfig) -> MigrationSession:
        report, plan = await self._plan(config)
        session = MigrationSession(
            id=generate_session_id(),
            config=config,
            plan=plan,
            metadata={"schema_version": report.schema_version}
        )

        if plan.is_noop:
            session.start()
            session.complete()
            self.console.print(Panel.fit(
                "[bold green]Nothing to do[/bold green]\n"
                f"Database '{config.target.database}' is already migrated and owned by "
                f"'{config.target.app_user}'.",
                title="Migration Result",
                border_style="green"
            ))
            self.display_summary(session)
            return session

        executor = StepExecutor(
            config=config,
            target=self._open_target(config),
            loader=self._loader_for(config),
            credentials=self._credentials_for(config)
        )

        # Prompt before the live progress display takes over the terminal.
        if any(step.id == StepId.CREATE_ROLE for step in plan.pending_steps):
            await asyncio.to_thread(
                self._credentials_for(config).application_password, config.target.app_user
            )

        try:
            await self._execute_with_progress(executor, plan, session)
        except MigratorError as e:
            self.display_steps(session.steps)
            self.console.print(Panel.fit(
                f"[bold red]Migration Failed[/bold red]\n"
                f"Step: {session.failed_step.value if session.failed_step else 'unknown'}\n"
                f"Error: {e.message}",
                title="Migration Result",
                border_style="red"
            ))
            raise

        self.console.print(Panel.fit(
            "[bold green]Migration Completed Successfully[/bold green]",
            title="Migration Result",
            border_style="green"
        ))
        self.display_summary(session)
        return session

    async def _execute_with_progress(
        self,
        executor: StepExecutor,
        plan: MigrationPlan,
        session: MigrationSession
    ) -> MigrationSession:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console
        ) as progress:
            main_task = progress.add_task("Migration Progress", total=len(plan.steps))
            finished = set()

            def on_step(step: MigrationStep):
                if step.status == StepStatus.RUNNING:
                    progress.update(main_task, description=f"{step.name}")
                elif step.id not in finished:
                    finished.add(step.id)
                    progress.update(main_task, completed=len(finished))
                    style = STATUS_STYLES[step.status]
                    progress.console.print(
                        f"[{style}]{step.status.value:>9}[/{style}]  {step.name}"
                    )

            def on_output(line: str):
                if self.show_loader_output:
                    progress.console.print(line, style="dim", markup=False, highlight=False)

            executor.on_step = on_step
            executor.on_output = on_output
            return await executor.execute(plan, session)

    def display_report(self, report: ReadinessReport):
        """Display preflight results."""
        table = Table(title="Preflight Checks")
        table.add_column("Check", style="cyan")
        table.add_column("Result", style="white")
        table.add_column("Details", style="white")

        for check in report.checks:
            result = "[green]PASSED[/green]" if check.passed else "[red]FAILED[/red]"
            table.add_row(check.name, result, check.message)

        self.console.print(table)

    def display_plan(self, plan: MigrationPlan):
        """Display the migration plan."""
        table = Table(title="Migration Plan")
        table.add_column("Step", style="cyan")
        table.add_column("Status", style="white")
        table.add_column("Action", style="white")
        table.add_column("Notes", style="white")

        for step in plan.steps:
            style = STATUS_STYLES[step.status]
            action = step.action.value if step.is_pending else "-"
            if step.destructive:
                action = f"[bold red]{action}[/bold red]"
            table.add_row(
                step.id.value,
                f"[{style}]{step.status.value}[/{style}]",
                action,
                step.reason or step.description or ""
            )

        self.console.print(table)

    def display_steps(self, steps: List[MigrationStep]):
        """Display step outcomes after execution."""
        table = Table(title="Migration Steps")
        table.add_column("Step", style="cyan")
        table.add_column("Status", style="white")
        table.add_column("Duration", style="white")

        for step in steps:
            style = STATUS_STYLES[step.status]
            duration = format_duration(step.duration) if step.duration is not None else "-"
            table.add_row(step.id.value, f"[{style}]{step.status.value}[/{style}]", duration)

        self.console.print(table)

    def display_summary(self, session: MigrationSession):
        """Display the final summary and the lightning.conf settings."""
        config = session.config
        target = config.target

        self.display_steps(session.steps)

        lines = [
            f"Source SQLite file: {config.source.path}",
            f"Target PostgreSQL database: {target.database}",
            f"PostgreSQL user: {target.app_user}",
            f"Connection: {target.endpoint}",
        ]
        try:
            counts = SQLiteSource(config.source.path).table_row_counts()
            lines.append(f"Tables: {len(counts)}, rows: {sum(counts.values())}")
        except sqlite3.Error as e:
            logger.debug(f"Row counts unavailable: {e}")
        if session.duration is not None:
            lines.append(f"Duration: {format_duration(session.duration)}")

        lines.append("")
        lines.append("[bold]Update your lightning.conf configuration:[/bold]")
        settings = target.wallet_settings()
        lines.append(f"  Set: {settings[0]}")
        for alternative in settings[1:]:
            lines.append(f"  Or:  {alternative}")
        lines.append("  Remove or comment out any sqlite3 configuration")
        lines.append("")
        lines.append("Restart lightningd to use the new PostgreSQL database.")

        self.console.print(Panel(
            "\n".join(lines),
            title="Migration Summary",
            border_style="blue"
        ))
