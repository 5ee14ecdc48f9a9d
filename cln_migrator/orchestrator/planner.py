"""
Plan building for a migration run.

The plan is derived entirely from what the target server looks like
right now: which database and role exist, whether the database holds
rows and who owns it. Nothing about earlier runs is remembered, so
running the tool again after a success produces a plan in which every
step is skipped.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from psycopg2 import Error as PostgreSQLError
from rich.console import Console
from rich.prompt import Confirm, Prompt

from cln_migrator.core.exceptions import ConfirmationRequired, TargetUnreachable
from cln_migrator.database.postgres_target import PostgresTarget
from cln_migrator.models.config import ExistingDatabasePolicy, MigrationConfig
from cln_migrator.models.session import (
    MigrationPlan,
    MigrationStep,
    StepAction,
    StepId,
    TargetState,
)

logger = logging.getLogger(__name__)


class Confirmer(ABC):
    """Capability to ask the operator about destructive choices."""

    @abstractmethod
    def confirm(self, question: str) -> bool:
        """Ask a yes/no question; the default answer is no."""
        pass

    @abstractmethod
    def confirm_typed(self, question: str, expected: str) -> bool:
        """Ask the operator to type ``expected`` back."""
        pass


class ConsoleConfirmer(Confirmer):
    """Confirmer that asks on the terminal with rich prompts."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def confirm(self, question: str) -> bool:
        return Confirm.ask(question, default=False, console=self.console)

    def confirm_typed(self, question: str, expected: str) -> bool:
        answer = Prompt.ask(question, console=self.console)
        return answer.strip() == expected


class PlanBuilder:
    """
    Builds an ordered MigrationPlan from the observed target state.

    Steps are always emitted in the same order: create-database,
    create-role, load-schema-and-data, grant-ownership. Each is either
    pending with a concrete action or skipped with a reason.
    """

    def __init__(self, target: PostgresTarget):
        self.target = target

    def observe(self, config: MigrationConfig) -> TargetState:
        """Query the target for everything the plan depends on."""
        database = config.target.database
        try:
            database_exists = self.target.database_exists(database)
            role_exists = self.target.role_exists(config.target.app_user)
            if database_exists:
                tables = self.target.user_tables(database)
                table_count = len(tables)
                has_data = table_count > 0 and self.target.database_has_data(database, tables)
                owner = self.target.database_owner(database)
            else:
                table_count, has_data, owner = 0, False, None
        except PostgreSQLError as e:
            raise TargetUnreachable(
                f"Could not inspect the target server: {str(e).strip()}",
                failed_checks=["target state"],
                details={"endpoint": config.target.endpoint},
            ) from e

        state = TargetState(
            database_exists=database_exists,
            role_exists=role_exists,
            database_has_data=has_data,
            database_owner=owner,
            table_count=table_count,
        )
        logger.debug(f"Observed target state: {state.model_dump()}")
        return state

    async def build(
        self,
        config: MigrationConfig,
        confirm: Optional[Confirmer] = None
    ) -> MigrationPlan:
        """
        Build the migration plan.

        Args:
            config: Migration configuration
            confirm: Operator confirmation capability, None when non-interactive

        Returns:
            Ordered migration plan

        Raises:
            ConfirmationRequired: If the target database holds data, the
                policy is ``ask`` and nobody can be asked
        """
        state = await asyncio.to_thread(self.observe, config)
        if not config.interactive:
            confirm = None

        database = config.target.database
        role = config.target.app_user

        create_database = MigrationStep(
            id=StepId.CREATE_DATABASE,
            name="Create database",
            description=f"Create PostgreSQL database '{database}'",
            metadata={"database": database},
        )
        create_role = MigrationStep(
            id=StepId.CREATE_ROLE,
            name="Create application role",
            description=f"Create login role '{role}' for lightningd",
            metadata={"role": role},
        )
        load = MigrationStep(
            id=StepId.LOAD,
            name="Load schema and data",
            description=f"Copy {config.source.path} into '{database}'",
            action=StepAction.LOAD,
            dependencies=[StepId.CREATE_DATABASE],
            metadata={"source": str(config.source.path), "database": database},
        )
        grant = MigrationStep(
            id=StepId.GRANT_OWNERSHIP,
            name="Grant ownership",
            description=f"Make '{role}' the owner of '{database}'",
            action=StepAction.GRANT,
            dependencies=[StepId.CREATE_DATABASE, StepId.CREATE_ROLE, StepId.LOAD],
            metadata={"database": database, "role": role},
        )

        self._plan_database(config, state, create_database, load, confirm)
        self._plan_role(config, state, create_role)

        earlier: List[MigrationStep] = [create_database, create_role, load]
        if not any(step.is_pending for step in earlier) and state.owned_by(role):
            grant.skip(f"'{database}' is already owned by '{role}'")

        plan = MigrationPlan(
            steps=[create_database, create_role, load, grant],
            state=state,
        )
        for step in plan.steps:
            if step.is_pending:
                logger.info(f"Plan: {step.id.value} -> {step.action.value}")
            else:
                logger.info(f"Plan: {step.id.value} skipped ({step.reason})")
        return plan

    def _plan_database(
        self,
        config: MigrationConfig,
        state: TargetState,
        create_database: MigrationStep,
        load: MigrationStep,
        confirm: Optional[Confirmer]
    ) -> None:
        database = config.target.database
        role = config.target.app_user

        if not state.database_exists:
            create_database.action = StepAction.CREATE
            return

        if not state.database_has_data:
            create_database.skip(f"Database '{database}' already exists and is empty")
            return

        if state.owned_by(role):
            create_database.skip(f"Database '{database}' already migrated and owned by '{role}'")
            load.skip(f"Database '{database}' already holds the migrated data")
            return

        policy = config.existing_database
        if policy == ExistingDatabasePolicy.ASK:
            policy = self._ask_about_existing(database, confirm)

        if policy == ExistingDatabasePolicy.RECREATE:
            logger.warning(f"Database '{database}' will be dropped and recreated")
            create_database.action = StepAction.RECREATE
            create_database.destructive = True
            create_database.description = f"Drop and recreate PostgreSQL database '{database}'"
        else:
            create_database.skip(f"Keeping existing database '{database}'")
            load.skip(f"Database '{database}' already contains data")

    def _ask_about_existing(
        self,
        database: str,
        confirm: Optional[Confirmer]
    ) -> ExistingDatabasePolicy:
        if confirm is None:
            raise ConfirmationRequired(
                f"Database '{database}' already exists and contains data",
                failed_checks=["existing database"],
                details={
                    "database": database,
                    "options": ["--recreate", "--skip-existing"],
                },
            )

        if not confirm.confirm(
            f"Database '{database}' already exists and contains data. "
            f"Do you want to drop and recreate it? This will delete all data."
        ):
            return ExistingDatabasePolicy.SKIP

        if not confirm.confirm_typed(
            f"Type the database name '{database}' to confirm", database
        ):
            raise ConfirmationRequired(
                f"Recreation of database '{database}' was not confirmed",
                failed_checks=["existing database"],
                details={"database": database},
            )
        return ExistingDatabasePolicy.RECREATE

    def _plan_role(
        self,
        config: MigrationConfig,
        state: TargetState,
        create_role: MigrationStep
    ) -> None:
        role = config.target.app_user
        if not state.role_exists:
            create_role.action = StepAction.CREATE
        elif config.reset_password:
            create_role.action = StepAction.UPDATE_PASSWORD
            create_role.name = "Update application role password"
            create_role.description = f"Set a new password for role '{role}'"
        else:
            create_role.skip(f"Role '{role}' already exists")
