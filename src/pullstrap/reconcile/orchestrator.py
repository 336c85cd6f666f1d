"""Gated, fail-forward execution of the provisioners."""
from __future__ import annotations

from collections.abc import Sequence

from ..logging import OperationScope, StructuredLogger
from ..prompts import Prompter
from ..reporting import Reporter
from .base import ResourceReconciler
from .models import (
    ApplyErrorKind,
    ApplyOutcome,
    ResourceApplyError,
    RunReport,
    SessionState,
    SkippedByOperator,
    StepResult,
    StepStatus,
)


class Orchestrator:
    """Run every provisioner in order: gate, collect, apply.

    A failing step is reported and logged; the remaining steps still run.
    Interrupts raised while prompting (for example an aborted terminal
    prompt) are not contained.
    """

    def __init__(
        self,
        provisioners: Sequence[ResourceReconciler],
        *,
        prompter: Prompter,
        reporter: Reporter,
        logger: StructuredLogger,
    ) -> None:
        """Bind the ordered provisioners and their collaborators."""
        self._provisioners = tuple(provisioners)
        self._prompter = prompter
        self._reporter = reporter
        self._logger = logger

    def run(self, session: SessionState) -> RunReport:
        """Execute each step once and return what happened."""
        steps: list[StepResult] = []
        for provisioner in self._provisioners:
            with self._logger.operation(
                f"setup {provisioner.kind.value}",
                args={"account": session.account},
                target={"kind": "resource", "scope": provisioner.kind.value},
            ) as op:
                steps.append(self._run_step(provisioner, session, op))
        return RunReport(steps=tuple(steps))

    def _run_step(
        self,
        provisioner: ResourceReconciler,
        session: SessionState,
        op: OperationScope,
    ) -> StepResult:
        kind = provisioner.kind
        if not self._prompter.confirm(provisioner.gate_prompt):
            declined = provisioner.declined_message()
            if declined:
                self._reporter.warn(declined)
                op.warning("Declined by operator.", warnings=[declined])
            else:
                self._reporter.info(f"Skipping {provisioner.title}.")
                op.success("Declined by operator.")
            return StepResult(kind=kind, status=StepStatus.SKIPPED, message="declined")

        try:
            provisioner.collect(session, self._prompter)
        except SkippedByOperator as exc:
            self._reporter.warn(str(exc))
            op.warning("Skipped by operator.", warnings=[str(exc)])
            return StepResult(kind=kind, status=StepStatus.SKIPPED, message=str(exc))

        try:
            outcome = provisioner.apply(session)
        except ResourceApplyError as exc:
            return self._failed(provisioner, op, exc.kind, str(exc))
        except Exception as exc:  # noqa: BLE001 - contained per resource
            message = f"Unexpected error while configuring {provisioner.title}: {exc}"
            return self._failed(provisioner, op, ApplyErrorKind.UNEXPECTED, message)

        status = StepStatus.CHANGED if outcome.changed else StepStatus.UNCHANGED
        if outcome.warnings:
            op.warning(
                f"{provisioner.title} reconciled with warnings.",
                warnings=list(outcome.warnings),
                changed=int(outcome.changed),
            )
        else:
            op.success(f"{provisioner.title} reconciled.", changed=int(outcome.changed))
        return StepResult(kind=kind, status=status, outcome=outcome)

    def _failed(
        self,
        provisioner: ResourceReconciler,
        op: OperationScope,
        error: ApplyErrorKind,
        message: str,
    ) -> StepResult:
        self._reporter.error(message)
        op.error(message, context={"error_kind": error.value})
        return StepResult(
            kind=provisioner.kind,
            status=StepStatus.FAILED,
            outcome=ApplyOutcome.failed(error),
            message=message,
        )


__all__ = ["Orchestrator"]
