"""Planning and execution of a migration run."""

from .executor import StepExecutor
from .orchestrator import MigrationOrchestrator
from .planner import Confirmer, ConsoleConfirmer, PlanBuilder

__all__ = [
    "Confirmer",
    "ConsoleConfirmer",
    "MigrationOrchestrator",
    "PlanBuilder",
    "StepExecutor",
]
