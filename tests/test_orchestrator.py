"""Tests for the gated, fail-forward orchestrator."""
from __future__ import annotations

import io
import json
from collections.abc import Sequence

import pytest
from conftest import FULL_RUN_ANSWERS, FakeAccounts, FakeSystemctl

from pullstrap.prompts import PromptExhaustedError, ScriptedPrompter
from pullstrap.reconcile import Orchestrator, build_provisioners
from pullstrap.reconcile.base import ResourceReconciler
from pullstrap.reconcile.models import (
    ApplyErrorKind,
    ApplyOutcome,
    HealthStatus,
    InspectionResult,
    ProvisionContext,
    ResourceApplyError,
    ResourceKind,
    SessionState,
    StepStatus,
)


class StubProvisioner(ResourceReconciler):
    """Provisioner with a scripted apply result."""

    kind = ResourceKind.HOST_FACTS
    title = "Stub"
    gate_question = "Run stub?"

    def __init__(
        self,
        context: ProvisionContext,
        *,
        kind: ResourceKind,
        error: Exception | None = None,
    ) -> None:
        """Record the behaviour for :meth:`apply`."""
        super().__init__(context)
        self.kind = kind
        self.title = f"Stub {kind.value}"
        self.error = error
        self.applied = False

    def inspect(self) -> InspectionResult:
        """Report nothing present."""
        return InspectionResult(present=False)

    def apply(self, session: SessionState) -> ApplyOutcome:
        """Raise the configured error or report a change."""
        self.applied = True
        if self.error is not None:
            raise self.error
        return ApplyOutcome.applied()

    def verify(self) -> HealthStatus:
        """Always healthy."""
        return HealthStatus.ok()


def _records(context: ProvisionContext) -> list[dict[str, object]]:
    lines = context.logger.path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def _orchestrator(
    context: ProvisionContext,
    provisioners: Sequence[ResourceReconciler],
    prompter: ScriptedPrompter,
) -> Orchestrator:
    return Orchestrator(
        provisioners,
        prompter=prompter,
        reporter=context.reporter,
        logger=context.logger,
    )


def test_declining_every_gate_skips_all_steps(
    provision_context: ProvisionContext,
    accounts: FakeAccounts,
    systemctl: FakeSystemctl,
    console_buffer: io.StringIO,
) -> None:
    """Declined gates change nothing and are journalled one record per step."""
    prompter = ScriptedPrompter(decline_when_exhausted=True)
    orchestrator = _orchestrator(
        provision_context, build_provisioners(provision_context), prompter
    )

    report = orchestrator.run(SessionState(account="ansible"))

    assert [step.status for step in report.steps] == [StepStatus.SKIPPED] * 6
    assert all(step.message == "declined" for step in report.steps)
    assert len(prompter.transcript) == 6
    assert systemctl.calls == []
    output = console_buffer.getvalue()
    assert "[INFO] Skipping Service account." in output
    assert "[WARN] Vault password setup skipped." in output

    records = _records(provision_context)
    assert [record["command"] for record in records] == [
        "setup account",
        "setup ssh-key",
        "setup ssh-host-config",
        "setup vault-secret",
        "setup host-facts",
        "setup scheduler-unit",
    ]
    statuses = {record["target"]["scope"]: record["result"]["status"] for record in records}
    assert statuses["vault-secret"] == "warning"
    assert statuses["account"] == "success"


def test_failures_do_not_stop_later_steps(
    provision_context: ProvisionContext,
    console_buffer: io.StringIO,
) -> None:
    """A failed or crashing step is contained and the run continues."""
    failing = StubProvisioner(
        provision_context,
        kind=ResourceKind.ACCOUNT,
        error=ResourceApplyError(ApplyErrorKind.COMMAND_FAILED, "useradd failed"),
    )
    crashing = StubProvisioner(
        provision_context, kind=ResourceKind.SSH_KEY, error=KeyError("boom")
    )
    healthy = StubProvisioner(provision_context, kind=ResourceKind.HOST_FACTS)
    prompter = ScriptedPrompter([True, True, True])

    report = _orchestrator(provision_context, [failing, crashing, healthy], prompter).run(
        SessionState(account="ansible")
    )

    assert [step.status for step in report.steps] == [
        StepStatus.FAILED,
        StepStatus.FAILED,
        StepStatus.CHANGED,
    ]
    assert healthy.applied is True
    assert [step.kind for step in report.failed] == [ResourceKind.ACCOUNT, ResourceKind.SSH_KEY]
    first, second, _third = report.steps
    assert first.outcome is not None and first.outcome.error is ApplyErrorKind.COMMAND_FAILED
    assert second.outcome is not None and second.outcome.error is ApplyErrorKind.UNEXPECTED
    output = console_buffer.getvalue()
    assert "[ERROR] useradd failed" in output
    assert "[ERROR] Unexpected error while configuring Stub ssh-key: 'boom'" in output

    records = _records(provision_context)
    assert [record["result"]["status"] for record in records] == ["error", "error", "success"]
    assert records[0]["result"]["context"] == {"error_kind": "command-failed"}
    assert records[2]["result"]["changed"] == 1


def test_operator_skip_during_collect(
    provision_context: ProvisionContext,
    existing_account: FakeAccounts,
) -> None:
    """Declining the repeated vault gate skips the step without writing."""
    provisioners = build_provisioners(provision_context)
    vault = provisioners[3]
    prompter = ScriptedPrompter([True, "", False])

    report = _orchestrator(provision_context, [vault], prompter).run(
        SessionState(account="ansible")
    )

    (step,) = report.steps
    assert step.status is StepStatus.SKIPPED
    assert "create it manually" in step.message
    assert not provision_context.config.vault_password_file.exists()
    (record,) = _records(provision_context)
    assert record["result"]["status"] == "warning"


def test_prompt_interrupt_is_not_contained(provision_context: ProvisionContext) -> None:
    """Errors raised while prompting abort the whole run."""
    stub = StubProvisioner(provision_context, kind=ResourceKind.ACCOUNT)

    with pytest.raises(PromptExhaustedError):
        _orchestrator(provision_context, [stub], ScriptedPrompter()).run(
            SessionState(account="ansible")
        )

    assert stub.applied is False


def test_full_run_then_rerun_is_unchanged(
    provision_context: ProvisionContext,
    existing_account: FakeAccounts,
    systemctl: FakeSystemctl,
) -> None:
    """Accepting every gate configures everything; a rerun changes nothing."""
    provisioners = build_provisioners(provision_context)

    first = _orchestrator(
        provision_context, provisioners, ScriptedPrompter(FULL_RUN_ANSWERS)
    ).run(SessionState(account="ansible"))
    second = _orchestrator(
        provision_context, provisioners, ScriptedPrompter(FULL_RUN_ANSWERS)
    ).run(SessionState(account="ansible"))

    assert [step.status for step in first.steps] == [StepStatus.CHANGED] * 6
    assert [step.status for step in second.steps] == [StepStatus.UNCHANGED] * 6
    assert first.failed == ()
    assert "ansible-pull.timer" in systemctl.active
    service = provision_context.systemd.service_path.read_text(encoding="utf-8")
    assert "--vault-password-file" in service


def test_declining_every_gate_on_provisioned_host_changes_nothing(
    provision_context: ProvisionContext,
    existing_account: FakeAccounts,
    systemctl: FakeSystemctl,
) -> None:
    """Declined gates leave every previously configured resource untouched."""
    provisioners = build_provisioners(provision_context)
    _orchestrator(provision_context, provisioners, ScriptedPrompter(FULL_RUN_ANSWERS)).run(
        SessionState(account="ansible")
    )
    config = provision_context.config
    files = [
        config.private_key,
        config.public_key,
        config.ssh_config_file,
        config.vault_password_file,
        config.facts_file,
        provision_context.systemd.service_path,
        provision_context.systemd.timer_path,
    ]
    before = [provisioner.inspect() for provisioner in provisioners]
    contents = {path: path.read_bytes() for path in files}
    systemctl.calls.clear()

    report = _orchestrator(
        provision_context, provisioners, ScriptedPrompter(decline_when_exhausted=True)
    ).run(SessionState(account="ansible"))

    assert [step.status for step in report.steps] == [StepStatus.SKIPPED] * 6
    assert [provisioner.inspect() for provisioner in provisioners] == before
    assert {path: path.read_bytes() for path in files} == contents
    assert [call[0] for call in systemctl.calls] == ["is-active"]
