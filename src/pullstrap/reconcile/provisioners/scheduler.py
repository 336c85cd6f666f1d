"""Recurring pull agent: a service unit plus the timer that fires it."""
from __future__ import annotations

from dataclasses import dataclass

from ...prompts import Prompter, ask_required
from ...providers.systemd import SystemdError
from ..base import (
    ResourceReconciler,
    file_present,
    read_text,
    verify_inspection,
)
from ..models import (
    ApplyErrorKind,
    ApplyOutcome,
    HealthStatus,
    InspectionError,
    InspectionResult,
    ResourceApplyError,
    ResourceKind,
    SessionState,
)

VAULT_FLAG = "--vault-password-file"


@dataclass(slots=True, frozen=True)
class ComposedUnits:
    """Rendered unit text for one session."""

    service: str
    timer: str
    service_context: dict[str, object]
    timer_context: dict[str, object]
    with_vault: bool


class SchedulerUnitProvisioner(ResourceReconciler):
    """Install and start the timer that runs the pull agent.

    The service passes the vault password file only when it exists at the
    moment the units are written.
    """

    kind = ResourceKind.SCHEDULER_UNIT
    title = "Systemd timer"
    gate_question = "Configure and enable systemd timer?"

    def inspect(self) -> InspectionResult:
        """Check both unit files and whether the timer is active."""
        systemd = self.context.systemd
        service_present = file_present(systemd.service_path)
        timer_present = file_present(systemd.timer_path)
        try:
            active = systemd.is_active(systemd.timer_name)
        except SystemdError as exc:
            raise InspectionError(f"Cannot query {systemd.timer_name}: {exc}") from exc
        return InspectionResult(
            present=service_present and timer_present and active,
            details={
                "service": "present" if service_present else "missing",
                "timer": "present" if timer_present else "missing",
                "active": "yes" if active else "no",
                "service_path": str(systemd.service_path),
                "timer_path": str(systemd.timer_path),
            },
        )

    def presence(self, inspection: InspectionResult) -> bool:
        """Count the units as present when both files exist, active or not."""
        return (
            inspection.details.get("service") == "present"
            and inspection.details.get("timer") == "present"
        )

    def collect(self, session: SessionState, prompter: Prompter) -> None:
        """Ask for the repository, branch and playbook."""
        pull = self.config.pull
        session.repo_url = ask_required(
            prompter,
            "Enter git repository URL (e.g. git@gitlab.com:user/infra.git)",
            on_empty="Repository URL is required!",
            report=self.context.reporter,
        )
        session.branch = prompter.ask(
            f"Enter git branch name (default: {pull.default_branch})",
            default=pull.default_branch,
        ).strip() or pull.default_branch
        session.playbook = prompter.ask(
            f"Enter playbook name (default: {pull.default_playbook})",
            default=pull.default_playbook,
        ).strip() or pull.default_playbook

    def compose_units(self, session: SessionState) -> ComposedUnits:
        """Render both units for *session* without touching the filesystem."""
        pull = self.config.pull
        systemd_cfg = self.config.systemd
        provider = self.context.systemd
        if not session.repo_url:
            raise ResourceApplyError(
                ApplyErrorKind.UNEXPECTED, "No repository URL was collected for the pull agent."
            )
        with_vault = self.config.vault_password_file.is_file()
        exec_start = [
            pull.binary,
            "-U",
            session.repo_url,
            "-C",
            session.branch or pull.default_branch,
            "-i",
            pull.inventory,
        ]
        if with_vault:
            exec_start += [VAULT_FLAG, str(self.config.vault_password_file)]
        exec_start.append(session.playbook or pull.default_playbook)

        service_context: dict[str, object] = {
            "service_user": self.config.account.name,
            "exec_start": exec_start,
            "timeout_stop_sec": systemd_cfg.timeout_stop_sec,
        }
        timer_context: dict[str, object] = {
            "service_name": provider.service_name,
            "boot_delay": systemd_cfg.boot_delay,
            "interval": systemd_cfg.interval,
            "randomized_delay": systemd_cfg.randomized_delay,
        }
        return ComposedUnits(
            service=provider.render_service(service_context),
            timer=provider.render_timer(timer_context),
            service_context=service_context,
            timer_context=timer_context,
            with_vault=with_vault,
        )

    def apply(self, session: SessionState) -> ApplyOutcome:
        """Write the units, reload, then enable and start the timer."""
        reporter = self.context.reporter
        provider = self.context.systemd
        self.require_account()
        warnings: list[str] = []
        units = self.compose_units(session)
        if not units.with_vault:
            message = "Vault password file not found. Service will run WITHOUT vault decryption!"
            reporter.warn(message)
            warnings.append(message)

        try:
            service_changed, timer_changed = provider.install_units(
                units.service_context, units.timer_context
            )
        except OSError as exc:
            raise ResourceApplyError(
                ApplyErrorKind.WRITE_FAILED, f"Failed to write unit files: {exc}"
            ) from exc
        except SystemdError as exc:
            raise ResourceApplyError(ApplyErrorKind.COMMAND_FAILED, str(exc)) from exc

        changed = service_changed or timer_changed
        try:
            if changed or not provider.is_active(provider.timer_name):
                provider.enable_now(provider.timer_name)
                changed = True
        except SystemdError as exc:
            raise ResourceApplyError(ApplyErrorKind.COMMAND_FAILED, str(exc)) from exc

        if changed:
            reporter.info("Systemd timer enabled and started.")
        else:
            reporter.info(f"{provider.timer_name} is already installed and active.")
        reporter.info(f"Check status with: systemctl status {provider.timer_name}")
        return ApplyOutcome(changed=changed, warnings=tuple(warnings))

    def verify(self) -> HealthStatus:
        """Classify the unit files; the timer's live state is checked separately."""
        inspection = verify_inspection(self)
        if isinstance(inspection, HealthStatus):
            return inspection
        provider = self.context.systemd
        if inspection.details.get("service") != "present":
            return HealthStatus.fatal(f"Service unit {provider.service_path} is missing.")
        if inspection.details.get("timer") != "present":
            return HealthStatus.fatal(f"Timer unit {provider.timer_path} is missing.")
        try:
            service_text = read_text(provider.service_path)
        except InspectionError as exc:
            return HealthStatus.fatal(f"Inspection failed: {exc}")
        vault_present = self.config.vault_password_file.is_file()
        uses_vault = VAULT_FLAG in service_text
        if vault_present and not uses_vault:
            return HealthStatus.warning(
                "Vault password file exists but the service runs without it; "
                "re-run setup to refresh the unit."
            )
        if uses_vault and not vault_present:
            return HealthStatus.warning(
                f"Service references {self.config.vault_password_file}, which is missing."
            )
        return HealthStatus.ok()


__all__ = ["ComposedUnits", "SchedulerUnitProvisioner", "VAULT_FLAG"]
