"""The reconcile contract every provisioner implements.

A provisioner owns one :class:`~pullstrap.reconcile.models.ResourceKind` and
exposes four steps:

``inspect``
    Observe current state. Never mutates; raises
    :class:`~pullstrap.reconcile.models.InspectionError` only when the state
    cannot be read at all.
``collect``
    Gather operator input after the gate was accepted. May raise
    :class:`~pullstrap.reconcile.models.SkippedByOperator`.
``apply``
    Non-interactive. Mutates toward the desired state and returns
    ``changed=False`` when nothing needed doing.
``verify``
    Re-inspect and classify. Independent of whether ``apply`` ran.
"""
from __future__ import annotations

import stat
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import ClassVar

from ..bootstrap.service_accounts import (
    ServiceAccountStatus,
    chown_to_account,
    inspect_service_account,
)
from ..config import AppConfig
from ..prompts import Prompter
from ..templates import write_atomic
from .models import (
    ApplyErrorKind,
    ApplyOutcome,
    HealthStatus,
    InspectionError,
    InspectionResult,
    ProvisionContext,
    ResourceApplyError,
    ResourceKind,
    SessionState,
    SkippedByOperator,
    ValidationError,
)


class ResourceReconciler(ABC):
    """Base class for the fixed set of provisioners."""

    kind: ClassVar[ResourceKind]
    title: ClassVar[str]
    gate_question: ClassVar[str]

    def __init__(self, context: ProvisionContext) -> None:
        """Bind the provisioner to its collaborators."""
        self.context = context

    @property
    def config(self) -> AppConfig:
        """Return the immutable run configuration."""
        return self.context.config

    @property
    def gate_prompt(self) -> str:
        """Return the yes/no question that gates this step."""
        return self.gate_question.format(account=self.config.account.name)

    def declined_message(self) -> str | None:
        """Return a warning to show when the gate is declined (``None`` = info only)."""
        return None

    def presence(self, inspection: InspectionResult) -> bool:
        """Return whether the resource counts as present in a health report."""
        return inspection.present

    @abstractmethod
    def inspect(self) -> InspectionResult:
        """Return the observed state of the resource."""

    def collect(self, session: SessionState, prompter: Prompter) -> None:  # noqa: B027
        """Gather operator input; most resources need none."""

    @abstractmethod
    def apply(self, session: SessionState) -> ApplyOutcome:
        """Reconcile the resource toward the desired state in *session*."""

    @abstractmethod
    def verify(self) -> HealthStatus:
        """Re-inspect and classify the resource."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------
    def account_status(self) -> ServiceAccountStatus:
        """Return the managed account's passwd entry."""
        return inspect_service_account(self.config.account.name)

    def require_account(self) -> ServiceAccountStatus:
        """Return the account status, failing the apply when it is missing."""
        status = self.account_status()
        if not status.user_exists:
            raise ResourceApplyError(
                ApplyErrorKind.INSPECTION_FAILED,
                f"User '{self.config.account.name}' does not exist; configure the account first.",
            )
        return status

    def inspect_or_fail(self) -> InspectionResult:
        """Run :meth:`inspect`, converting read failures into apply errors."""
        try:
            return self.inspect()
        except InspectionError as exc:
            raise ResourceApplyError(ApplyErrorKind.INSPECTION_FAILED, str(exc)) from exc

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        mode: int,
        owner: ServiceAccountStatus | None = None,
    ) -> bool:
        """Atomically write *content*; return ``True`` when anything changed."""
        try:
            changed = write_atomic(path, content, mode=mode)
            if owner is not None:
                chown_to_account(path, owner)
        except OSError as exc:
            raise ResourceApplyError(
                ApplyErrorKind.WRITE_FAILED, f"Failed to write {path}: {exc}"
            ) from exc
        return changed

    def ensure_directory(
        self,
        path: Path,
        *,
        mode: int,
        owner: ServiceAccountStatus | None = None,
    ) -> bool:
        """Create *path* with *mode* if missing; return ``True`` when created."""
        created = False
        try:
            if not path.is_dir():
                path.mkdir(parents=True, exist_ok=True)
                path.chmod(mode)
                created = True
            if owner is not None:
                chown_to_account(path, owner)
        except OSError as exc:
            raise ResourceApplyError(
                ApplyErrorKind.WRITE_FAILED, f"Failed to create directory {path}: {exc}"
            ) from exc
        return created


# ---------------------------------------------------------------------------
# Filesystem inspection helpers
# ---------------------------------------------------------------------------


def file_present(path: Path) -> bool:
    """Return ``True`` when *path* is a regular file.

    Missing paths are simply absent; permission problems mean the state is
    unknown and raise :class:`InspectionError`.
    """
    try:
        info = path.stat()
    except (FileNotFoundError, NotADirectoryError):
        return False
    except PermissionError as exc:
        raise InspectionError(f"Cannot inspect {path}: {exc}") from exc
    return stat.S_ISREG(info.st_mode)


def file_mode(path: Path) -> int | None:
    """Return the permission bits of *path*, or ``None`` when missing."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except (FileNotFoundError, NotADirectoryError):
        return None
    except PermissionError as exc:
        raise InspectionError(f"Cannot inspect {path}: {exc}") from exc


def read_text(path: Path) -> str:
    """Read *path*, converting permission problems into :class:`InspectionError`.

    Bytes that are not valid UTF-8 are decoded as U+FFFD instead of failing.
    """
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except (PermissionError, IsADirectoryError) as exc:
        raise InspectionError(f"Cannot read {path}: {exc}") from exc


def format_mode(mode: int | None) -> str:
    """Render permission bits the way ``ls``/``chmod`` users expect."""
    return "missing" if mode is None else f"{mode:04o}"


def verify_inspection(reconciler: ResourceReconciler) -> InspectionResult | HealthStatus:
    """Run ``inspect`` for a verify pass, mapping read failures to ``fatal``."""
    try:
        return reconciler.inspect()
    except InspectionError as exc:
        return HealthStatus.fatal(f"Inspection failed: {exc}")


def require_text(value: str, message: str) -> str:
    """Return *value* stripped, raising :class:`ValidationError` when empty."""
    stripped = value.strip()
    if not stripped:
        raise ValidationError(message)
    return stripped


def confirm_until_valid(
    prompter: Prompter,
    question: str,
    read: Callable[[], str],
    *,
    on_empty: str,
    on_decline: str,
    report: Callable[[str], None],
) -> str:
    """Read a value after an accepted gate, re-asking the gate on empty input.

    An empty answer prints *on_empty* and asks *question* again; declining
    raises :class:`SkippedByOperator` with *on_decline*.
    """
    while True:
        try:
            return require_text(read(), on_empty)
        except ValidationError as exc:
            report(str(exc))
        if not prompter.confirm(question):
            raise SkippedByOperator(on_decline)


__all__ = [
    "ResourceReconciler",
    "confirm_until_valid",
    "file_mode",
    "file_present",
    "format_mode",
    "read_text",
    "require_text",
    "verify_inspection",
]
