"""
Session models for the Core Lightning migrator.

This module defines Pydantic models for migration steps, the observed
target state, the ordered plan derived from it, and the session that
records one execution of that plan.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cln_migrator.models.config import MigrationConfig


class StepId(str, Enum):
    """Migration steps, in execution order."""
    CREATE_DATABASE = "create-database"
    CREATE_ROLE = "create-role"
    LOAD = "load-schema-and-data"
    GRANT_OWNERSHIP = "grant-ownership"


STEP_ORDER: List[StepId] = [
    StepId.CREATE_DATABASE,
    StepId.CREATE_ROLE,
    StepId.LOAD,
    StepId.GRANT_OWNERSHIP,
]


class StepStatus(str, Enum):
    """Migration step status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepAction(str, Enum):
    """What a pending step will actually do."""
    NONE = "none"
    CREATE = "create"
    RECREATE = "recreate"
    UPDATE_PASSWORD = "update_password"
    LOAD = "load"
    GRANT = "grant"


class MigrationStatus(str, Enum):
    """Migration session status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class MigrationStep(BaseModel):
    """Individual migration step."""
    id: StepId
    name: str
    description: Optional[str] = None
    action: StepAction = StepAction.NONE
    status: StepStatus = StepStatus.PENDING
    reason: Optional[str] = None
    destructive: bool = False
    dependencies: List[StepId] = Field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None  # seconds
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING

    def start(self):
        """Mark step as started."""
        self.status = StepStatus.RUNNING
        self.start_time = datetime.now(UTC)

    def complete(self):
        """Mark step as completed."""
        self.status = StepStatus.COMPLETED
        self.end_time = datetime.now(UTC)
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()

    def fail(self, error: str):
        """Mark step as failed with an error message."""
        self.status = StepStatus.FAILED
        self.end_time = datetime.now(UTC)
        self.error = error
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()

    def skip(self, reason: str):
        """Mark step as already satisfied."""
        self.status = StepStatus.SKIPPED
        self.action = StepAction.NONE
        self.reason = reason


class TargetState(BaseModel):
    """State of the PostgreSQL server observed before planning."""
    database_exists: bool = False
    role_exists: bool = False
    database_has_data: bool = False
    database_owner: Optional[str] = None
    table_count: int = 0

    model_config = ConfigDict(frozen=True)

    def owned_by(self, role: str) -> bool:
        return self.database_exists and self.database_owner == role


class MigrationPlan(BaseModel):
    """Ordered steps derived from the observed target state."""
    steps: List[MigrationStep]
    state: TargetState
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def get_step(self, step_id: StepId) -> Optional[MigrationStep]:
        """Get a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def pending_steps(self) -> List[MigrationStep]:
        return [step for step in self.steps if step.is_pending]

    @property
    def is_noop(self) -> bool:
        """Whether executing the plan would change nothing."""
        return not self.pending_steps

    @property
    def is_destructive(self) -> bool:
        return any(step.destructive for step in self.pending_steps)


class MigrationSession(BaseModel):
    """One execution of a migration plan."""
    id: str
    config: MigrationConfig
    plan: MigrationPlan
    status: MigrationStatus = MigrationStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None  # seconds
    current_step: Optional[StepId] = None
    failed_step: Optional[StepId] = None
    error: Optional[str] = None
    log_path: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def steps(self) -> List[MigrationStep]:
        return self.plan.steps

    def start(self):
        """Start the migration session."""
        self.status = MigrationStatus.RUNNING
        self.start_time = datetime.now(UTC)

    def complete(self):
        """Complete the migration session."""
        self.status = MigrationStatus.COMPLETED
        self.current_step = None
        self.end_time = datetime.now(UTC)
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()

    def fail(self, step_id: Optional[StepId], error: str):
        """Fail the migration session."""
        self.status = MigrationStatus.FAILED
        self.failed_step = step_id
        self.error = error
        self.end_time = datetime.now(UTC)
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()

    def get_step(self, step_id: StepId) -> Optional[MigrationStep]:
        """Get a step by ID."""
        return self.plan.get_step(step_id)

    def completed_steps(self) -> List[MigrationStep]:
        return [step for step in self.steps if step.status == StepStatus.COMPLETED]
