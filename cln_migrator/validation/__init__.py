"""Read-only checks run before any change is made to the target."""

from .preflight import CheckResult, PreflightCheck, PreflightValidator, ReadinessReport

__all__ = ["CheckResult", "PreflightCheck", "PreflightValidator", "ReadinessReport"]
