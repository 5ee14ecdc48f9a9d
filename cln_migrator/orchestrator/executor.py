"""
Step execution for a migration plan.

Steps run strictly in plan order. A step either completes or raises;
the first failure halts the run and nothing is retried.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional

from cln_migrator.core.exceptions import ExecutionError, MigratorError
from cln_migrator.database.postgres_target import (
    AdminStatement,
    PostgresTarget,
    alter_database_owner_statement,
    alter_role_password_statement,
    create_database_statement,
    create_role_statement,
    default_privileges_statement,
    drop_database_statement,
    grant_schema_statement,
    grant_sequences_statement,
    grant_tables_statement,
)
from cln_migrator.loaders.base import Loader, LoadTarget, OutputCallback
from cln_migrator.models.config import MigrationConfig
from cln_migrator.models.session import (
    MigrationPlan,
    MigrationSession,
    MigrationStep,
    StepAction,
    StepId,
)
from cln_migrator.security.credentials import CredentialBroker
from cln_migrator.utils.helpers import generate_session_id
from cln_migrator.utils.logging import LogCategory, MigrationLogger

StepCallback = Callable[[MigrationStep], None]


class StepExecutor:
    """
    Executes the pending steps of a MigrationPlan against the target.

    The application password is requested from the credential broker
    only when the create-role step actually runs.
    """

    def __init__(
        self,
        config: MigrationConfig,
        target: PostgresTarget,
        loader: Loader,
        credentials: CredentialBroker,
        on_output: Optional[OutputCallback] = None,
        on_step: Optional[StepCallback] = None
    ):
        self.config = config
        self.target = target
        self.loader = loader
        self.credentials = credentials
        self.on_output = on_output
        self.on_step = on_step
        self._handlers: Dict[StepId, Callable[[MigrationStep], Awaitable[None]]] = {
            StepId.CREATE_DATABASE: self._create_database,
            StepId.CREATE_ROLE: self._create_role,
            StepId.LOAD: self._load,
            StepId.GRANT_OWNERSHIP: self._grant_ownership,
        }
        self.session: Optional[MigrationSession] = None
        self.logger: Optional[MigrationLogger] = None

    def _notify(self, step: MigrationStep) -> None:
        if self.on_step is not None:
            self.on_step(step)

    async def execute(
        self,
        plan: MigrationPlan,
        session: Optional[MigrationSession] = None
    ) -> MigrationSession:
        """
        Execute every pending step of the plan in order.

        Args:
            plan: Plan produced by the PlanBuilder
            session: Session to record into; a new one is created if omitted

        Returns:
            The completed migration session

        Raises:
            ExecutionError: If a step fails; the session is marked failed
            CredentialError: If the application password cannot be obtained
        """
        if session is None:
            session = MigrationSession(id=generate_session_id(), config=self.config, plan=plan)
        self.session = session
        self.logger = MigrationLogger(session.id, structured=self.config.structured_logging)

        session.start()
        for step in plan.steps:
            if not step.is_pending:
                self.logger.step_skipped(step.id.value, step.reason or "already satisfied")
                self._notify(step)
                continue

            await self._execute_step(session, step)

        session.complete()
        self.logger.info(f"Migration session {session.id} completed")
        return session

    async def _execute_step(self, session: MigrationSession, step: MigrationStep) -> None:
        step.start()
        session.current_step = step.id
        self.logger.step_start(step.id.value)
        self._notify(step)
        started = time.time()

        try:
            await self._handlers[step.id](step)
        except MigratorError as e:
            if isinstance(e, ExecutionError) and e.step is None:
                e.step = step.id.value
            step.fail(e.message)
            session.fail(step.id, e.message)
            if isinstance(e, ExecutionError) and e.log_path:
                session.log_path = e.log_path
            self.logger.step_failed(step.id.value, e.message, error_code=e.code)
            self._notify(step)
            raise

        step.complete()
        self.logger.step_complete(step.id.value, time.time() - started)
        self._notify(step)

    async def _run_statement(self, statement: AdminStatement, database: str = "postgres") -> None:
        self.logger.log_database_operation(statement.description, database)
        await asyncio.to_thread(self.target.execute_admin, statement, database)

    async def _create_database(self, step: MigrationStep) -> None:
        database = self.config.target.database
        if step.action == StepAction.RECREATE:
            self.logger.warning(f"Dropping existing database '{database}'")
            await self._run_statement(drop_database_statement(database))
        await self._run_statement(create_database_statement(database))

    async def _create_role(self, step: MigrationStep) -> None:
        role = self.config.target.app_user
        password = await asyncio.to_thread(self.credentials.application_password, role)

        if step.action == StepAction.UPDATE_PASSWORD:
            await self._run_statement(alter_role_password_statement(role, password))
        else:
            await self._run_statement(create_role_statement(role, password))

    async def _load(self, step: MigrationStep) -> None:
        target = LoadTarget.from_config(self.config.target)
        password = self.credentials.admin_password(self.config.target.admin_user)

        result = await self.loader.load(
            self.config.source.path,
            target,
            self.config.loader.cast_policy,
            password=password,
            on_output=self.on_output
        )
        step.metadata["duration"] = result.duration
        self.logger.info(
            f"{self.loader.name} finished with exit code {result.exit_status}",
            category=LogCategory.LOADER,
            step=step.id.value,
            metadata={"command": result.command, "exit_status": result.exit_status}
        )

        if not result.is_successful:
            log_hint = f" Check log file: {result.log_path}." if result.log_path else ""
            raise ExecutionError(
                f"Data migration failed (exit code {result.exit_status}).{log_hint} "
                f"The target database may hold a partial load; inspect the log "
                f"before rerunning.",
                step=step.id.value,
                command=result.command,
                exit_status=result.exit_status,
                output=result.output_tail,
                log_path=result.log_path,
                details={"partial_load": True},
            )

    async def _grant_ownership(self, step: MigrationStep) -> None:
        database = self.config.target.database
        role = self.config.target.app_user

        await self._run_statement(alter_database_owner_statement(database, role))
        await self._run_statement(grant_schema_statement(role), database)
        await self._run_statement(grant_tables_statement(role), database)
        await self._run_statement(grant_sequences_statement(role), database)

        try:
            await self._run_statement(default_privileges_statement(role), database)
        except ExecutionError as e:
            step.metadata["default_privileges_error"] = e.output
            self.logger.warning(f"Failed to set default privileges (non-critical): {e.output}")
