"""Data models shared by provisioners, the orchestrator and the health pass."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..logging import StructuredLogger
    from ..providers.ssh import ProbeRunner
    from ..providers.systemd import SystemdProvider
    from ..reporting import Reporter
    from ..templates import TemplateEngine


Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]


class ResourceKind(str, Enum):
    """Managed resource kinds, in dependency order."""

    ACCOUNT = "account"
    SSH_KEY = "ssh-key"
    SSH_HOST_CONFIG = "ssh-host-config"
    VAULT_SECRET = "vault-secret"
    HOST_FACTS = "host-facts"
    SCHEDULER_UNIT = "scheduler-unit"


class ApplyErrorKind(str, Enum):
    """Why an apply step failed."""

    COMMAND_FAILED = "command-failed"
    WRITE_FAILED = "write-failed"
    INSPECTION_FAILED = "inspection-failed"
    UNEXPECTED = "unexpected"


class HealthLevel(str, Enum):
    """Severity of a health verdict."""

    OK = "ok"
    WARNING = "warning"
    FATAL = "fatal"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class InspectionError(RuntimeError):
    """Raised when the current state of a resource cannot be read."""


class ResourceApplyError(RuntimeError):
    """Raised when mutating a single resource fails."""

    def __init__(self, kind: ApplyErrorKind, message: str) -> None:
        """Record the failure category alongside the message."""
        super().__init__(message)
        self.kind = kind


class ValidationError(ValueError):
    """Raised for empty or malformed operator input."""


class SkippedByOperator(Exception):  # noqa: N818 - an outcome, not a failure
    """Raised when the operator declines a step after accepting its gate."""


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class InspectionResult:
    """Observed state of a resource, gathered without side effects."""

    present: bool
    details: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ApplyOutcome:
    """Result of reconciling one resource toward its desired state."""

    changed: bool
    error: ApplyErrorKind | None = None
    warnings: Sequence[str] = field(default_factory=tuple)

    @classmethod
    def unchanged(cls, *warnings: str) -> ApplyOutcome:
        """Return a no-op outcome."""
        return cls(changed=False, warnings=tuple(warnings))

    @classmethod
    def applied(cls, *warnings: str) -> ApplyOutcome:
        """Return an outcome for a successful mutation."""
        return cls(changed=True, warnings=tuple(warnings))

    @classmethod
    def failed(cls, error: ApplyErrorKind) -> ApplyOutcome:
        """Return an outcome for a failed mutation."""
        return cls(changed=False, error=error)


@dataclass(slots=True, frozen=True)
class HealthStatus:
    """Verdict produced by a verification pass."""

    level: HealthLevel
    reason: str | None = None

    @classmethod
    def ok(cls) -> HealthStatus:
        """Return a healthy verdict."""
        return cls(HealthLevel.OK)

    @classmethod
    def warning(cls, reason: str) -> HealthStatus:
        """Return a degraded verdict."""
        return cls(HealthLevel.WARNING, reason)

    @classmethod
    def fatal(cls, reason: str) -> HealthStatus:
        """Return a failed verdict."""
        return cls(HealthLevel.FATAL, reason)

    @property
    def is_ok(self) -> bool:
        """Return ``True`` for healthy verdicts."""
        return self.level is HealthLevel.OK


@dataclass(slots=True)
class SessionState:
    """Operator-supplied parameters for the current run; never persisted."""

    account: str
    git_host: str | None = None
    repo_url: str | None = None
    branch: str | None = None
    playbook: str | None = None
    host_roles: str | None = None
    vault_password: str | None = field(default=None, repr=False)


@dataclass(slots=True, frozen=True)
class ProvisionContext:
    """Collaborators handed to every provisioner."""

    config: AppConfig
    reporter: Reporter
    logger: StructuredLogger
    templates: TemplateEngine
    systemd: SystemdProvider
    runner: Runner
    probe_runner: ProbeRunner | None = None
    hostname: str = "localhost"


# ---------------------------------------------------------------------------
# Orchestration and health reports
# ---------------------------------------------------------------------------


class StepStatus(str, Enum):
    """How a single orchestrated step ended."""

    CHANGED = "changed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class StepResult:
    """Outcome of one gated provisioning step."""

    kind: ResourceKind
    status: StepStatus
    outcome: ApplyOutcome | None = None
    message: str = ""


@dataclass(slots=True, frozen=True)
class RunReport:
    """All steps of one orchestrated run, in execution order."""

    steps: Sequence[StepResult]

    def step(self, kind: ResourceKind) -> StepResult | None:
        """Return the step for *kind*, if it ran."""
        for step in self.steps:
            if step.kind is kind:
                return step
        return None

    @property
    def failed(self) -> tuple[StepResult, ...]:
        """Return failed steps."""
        return tuple(step for step in self.steps if step.status is StepStatus.FAILED)


class Condition(str, Enum):
    """Coarse health classification shown to operators."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    MISSING = "missing"


@dataclass(slots=True, frozen=True)
class HealthEntry:
    """Health verdict for one resource (or live check)."""

    id: str
    title: str
    status: HealthStatus
    present: bool
    kind: ResourceKind | None = None
    detail: str | None = None

    @property
    def condition(self) -> Condition:
        """Return healthy / degraded / missing."""
        if not self.present:
            return Condition.MISSING
        if self.status.is_ok:
            return Condition.HEALTHY
        return Condition.DEGRADED


@dataclass(slots=True, frozen=True)
class HealthSummary:
    """Aggregated counts for a health report."""

    level: HealthLevel
    totals: Mapping[HealthLevel, int]


@dataclass(slots=True, frozen=True)
class HealthReport:
    """Complete report for a health pass."""

    entries: Sequence[HealthEntry]
    summary: HealthSummary

    def entry(self, entry_id: str) -> HealthEntry | None:
        """Return the entry named *entry_id*."""
        for item in self.entries:
            if item.id == entry_id:
                return item
        return None


LEVEL_ORDER: Mapping[HealthLevel, int] = {
    HealthLevel.OK: 0,
    HealthLevel.WARNING: 1,
    HealthLevel.FATAL: 2,
}


def summarize(entries: Iterable[HealthEntry]) -> HealthSummary:
    """Count verdicts and pick the worst level."""
    totals: dict[HealthLevel, int] = {level: 0 for level in HealthLevel}
    worst = HealthLevel.OK
    for entry in entries:
        level = entry.status.level
        totals[level] += 1
        if LEVEL_ORDER[level] > LEVEL_ORDER[worst]:
            worst = level
    return HealthSummary(level=worst, totals=totals)


def build_health_report(entries: Sequence[HealthEntry]) -> HealthReport:
    """Create a :class:`HealthReport` from *entries*."""
    return HealthReport(entries=tuple(entries), summary=summarize(entries))


__all__ = [
    "ApplyErrorKind",
    "ApplyOutcome",
    "Condition",
    "HealthEntry",
    "HealthLevel",
    "HealthReport",
    "HealthStatus",
    "HealthSummary",
    "InspectionError",
    "InspectionResult",
    "LEVEL_ORDER",
    "ProvisionContext",
    "ResourceApplyError",
    "ResourceKind",
    "RunReport",
    "Runner",
    "SessionState",
    "SkippedByOperator",
    "StepResult",
    "StepStatus",
    "ValidationError",
    "build_health_report",
    "summarize",
]
