"""Post-hoc health pass over every managed resource."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from ..providers.ssh import ProbeOutcome, build_probe_command, probe_connectivity
from ..providers.systemd import SystemdError
from ..reporting import Reporter
from .base import ResourceReconciler
from .models import (
    LEVEL_ORDER,
    HealthEntry,
    HealthLevel,
    HealthReport,
    HealthStatus,
    InspectionError,
    ProvisionContext,
    ResourceKind,
    SessionState,
    build_health_report,
)
from .provisioners.ssh_config import SSHHostConfigProvisioner

SCHEDULER_ACTIVE_ID = "scheduler-active"


def _worst(current: HealthStatus, candidate: HealthStatus) -> HealthStatus:
    if candidate.is_ok:
        return current
    if current.is_ok:
        return candidate
    level = max(current.level, candidate.level, key=LEVEL_ORDER.__getitem__)
    reasons = [item for item in (current.reason, candidate.reason) if item]
    return HealthStatus(level, "; ".join(reasons))


class HealthChecker:
    """Inspect and verify every resource, then run the live checks.

    The pass never mutates anything and does not depend on whether the
    orchestrator ran; ``pullstrap check`` runs it alone.
    """

    def __init__(
        self,
        provisioners: Sequence[ResourceReconciler],
        context: ProvisionContext,
    ) -> None:
        """Bind the provisioners whose resources are checked."""
        self._provisioners = tuple(provisioners)
        self._context = context

    def run(self, session: SessionState | None = None) -> HealthReport:
        """Build the report; *session* supplies the git host when known."""
        with self._context.logger.operation(
            "check",
            args={"git_host": session.git_host if session else None},
            target={"kind": "system", "scope": "health"},
        ) as op:
            entries: list[HealthEntry] = []
            for provisioner in self._provisioners:
                entry = self._check(provisioner)
                if isinstance(provisioner, SSHHostConfigProvisioner) and entry.present:
                    entry = self._with_probe(entry, provisioner, session)
                entries.append(entry)
            entries.append(self._scheduler_active())
            report = build_health_report(entries)

            log_context = {
                "entries": {
                    item.id: {
                        "condition": item.condition.value,
                        "level": item.status.level.value,
                        "reason": item.status.reason,
                    }
                    for item in report.entries
                }
            }
            problems = [
                f"{item.id}: {item.status.reason}"
                for item in report.entries
                if not item.status.is_ok
            ]
            if report.summary.level is HealthLevel.OK:
                op.success("Environment check passed.", context=log_context)
            elif report.summary.level is HealthLevel.WARNING:
                op.warning(
                    "Environment check completed with warnings.",
                    warnings=problems,
                    context=log_context,
                )
            else:
                op.error("Environment check found failures.", errors=problems, context=log_context)
        return report

    # ------------------------------------------------------------------
    def _check(self, provisioner: ResourceReconciler) -> HealthEntry:
        try:
            inspection = provisioner.inspect()
        except InspectionError as exc:
            return HealthEntry(
                id=provisioner.kind.value,
                title=provisioner.title,
                status=HealthStatus.fatal(f"Inspection failed: {exc}"),
                present=False,
                kind=provisioner.kind,
            )
        try:
            status = provisioner.verify()
        except InspectionError as exc:
            status = HealthStatus.fatal(f"Inspection failed: {exc}")
        return HealthEntry(
            id=provisioner.kind.value,
            title=provisioner.title,
            status=status,
            present=provisioner.presence(inspection),
            kind=provisioner.kind,
        )

    def _with_probe(
        self,
        entry: HealthEntry,
        provisioner: SSHHostConfigProvisioner,
        session: SessionState | None,
    ) -> HealthEntry:
        host = (session.git_host if session else None) or provisioner.configured_host()
        if not host:
            status = _worst(
                entry.status,
                HealthStatus.warning("Skipping SSH connection check (Host not found in config)."),
            )
            return replace(entry, status=status)

        outcome = self.probe(host)
        if outcome.success:
            return replace(entry, detail=f"SSH connection to {host} OK.")
        reason = f"SSH connection to {host} FAILED."
        if outcome.timed_out:
            reason += f" No answer within {self._context.config.ssh.probe_timeout:g}s."
        elif outcome.error:
            reason += f" {outcome.error}"
        return replace(entry, status=_worst(entry.status, HealthStatus.warning(reason)))

    def probe(self, host: str) -> ProbeOutcome:
        """Attempt a batch-mode handshake with *host* as the service account."""
        config = self._context.config
        ssh = config.ssh
        command = build_probe_command(
            account=config.account.name,
            host=host,
            probe_user=ssh.probe_user,
            timeout=ssh.probe_timeout,
            ssh_bin=ssh.ssh_bin,
            sudo_bin=ssh.sudo_bin,
        )
        return probe_connectivity(
            command,
            host=host,
            timeout=ssh.probe_timeout,
            greeting_patterns=ssh.greeting_patterns,
            runner=self._context.probe_runner,
        )

    def _scheduler_active(self) -> HealthEntry:
        systemd = self._context.systemd
        try:
            active = systemd.is_active(systemd.timer_name)
        except SystemdError as exc:
            status = HealthStatus.fatal(f"Cannot query {systemd.timer_name}: {exc}")
            active = False
        else:
            status = (
                HealthStatus.ok()
                if active
                else HealthStatus.fatal("Systemd timer failed to start")
            )
        return HealthEntry(
            id=SCHEDULER_ACTIVE_ID,
            title="Systemd timer activity",
            status=status,
            present=active,
            kind=ResourceKind.SCHEDULER_UNIT,
            detail=f"{systemd.timer_name} is active." if active else None,
        )


def report_health(report: HealthReport, reporter: Reporter) -> None:
    """Print one tagged line per entry followed by the totals."""
    for entry in report.entries:
        level = entry.status.level
        if level is HealthLevel.OK:
            reporter.info(f"{entry.title}: {entry.detail or 'OK'}")
        elif level is HealthLevel.WARNING:
            reporter.warn(f"{entry.title}: {entry.status.reason}")
        else:
            reporter.error(f"{entry.title}: {entry.status.reason}")
    totals = report.summary.totals
    reporter.info(
        f"Environment check: ok={totals.get(HealthLevel.OK, 0)} "
        f"warning={totals.get(HealthLevel.WARNING, 0)} "
        f"fatal={totals.get(HealthLevel.FATAL, 0)}"
    )


__all__ = ["SCHEDULER_ACTIVE_ID", "HealthChecker", "report_health"]
