"""Idempotent provisioning of the pull agent's resources."""
from __future__ import annotations

from .base import ResourceReconciler
from .health import HealthChecker, report_health
from .models import (
    ApplyErrorKind,
    ApplyOutcome,
    Condition,
    HealthEntry,
    HealthLevel,
    HealthReport,
    HealthStatus,
    InspectionError,
    InspectionResult,
    ProvisionContext,
    ResourceApplyError,
    ResourceKind,
    RunReport,
    SessionState,
    SkippedByOperator,
    StepResult,
    StepStatus,
    ValidationError,
)
from .orchestrator import Orchestrator
from .provisioners import build_provisioners

__all__ = [
    "ApplyErrorKind",
    "ApplyOutcome",
    "Condition",
    "HealthChecker",
    "HealthEntry",
    "HealthLevel",
    "HealthReport",
    "HealthStatus",
    "InspectionError",
    "InspectionResult",
    "Orchestrator",
    "ProvisionContext",
    "ResourceApplyError",
    "ResourceKind",
    "ResourceReconciler",
    "RunReport",
    "SessionState",
    "SkippedByOperator",
    "StepResult",
    "StepStatus",
    "ValidationError",
    "build_provisioners",
    "report_health",
]
