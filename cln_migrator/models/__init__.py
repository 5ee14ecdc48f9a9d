"""
Data models for the Core Lightning migrator.

This module contains Pydantic models for configuration,
migration plans, and session state.
"""

from cln_migrator.models.config import (
    CastPolicy,
    CastRule,
    ExistingDatabasePolicy,
    LoaderConfig,
    MigrationConfig,
    SourceConfig,
    TargetConfig,
)
from cln_migrator.models.session import (
    MigrationPlan,
    MigrationSession,
    MigrationStatus,
    MigrationStep,
    StepAction,
    StepId,
    StepStatus,
    TargetState,
    STEP_ORDER,
)

__all__ = [
    # Configuration models
    "CastPolicy",
    "CastRule",
    "ExistingDatabasePolicy",
    "LoaderConfig",
    "MigrationConfig",
    "SourceConfig",
    "TargetConfig",
    # Session models
    "MigrationPlan",
    "MigrationSession",
    "MigrationStatus",
    "MigrationStep",
    "StepAction",
    "StepId",
    "StepStatus",
    "TargetState",
    "STEP_ORDER",
]
