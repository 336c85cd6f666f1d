"""Service account and password-free privilege grant."""
from __future__ import annotations

import shutil
import subprocess
import tempfile
from pathlib import Path

from ...bootstrap.service_accounts import (
    ServiceAccountSpec,
    apply_service_account_plan,
    plan_service_account,
)
from ..base import (
    ResourceReconciler,
    file_mode,
    file_present,
    format_mode,
    read_text,
    verify_inspection,
)
from ..models import (
    ApplyErrorKind,
    ApplyOutcome,
    HealthStatus,
    InspectionResult,
    ResourceApplyError,
    ResourceKind,
    SessionState,
)

GRANT_MODE = 0o440


class ServiceAccountProvisioner(ResourceReconciler):
    """Ensure the account exists and holds a NOPASSWD sudoers grant.

    An existing grant file is never rewritten, even when its content no longer
    matches the account; :meth:`verify` reports such drift instead.
    """

    kind = ResourceKind.ACCOUNT
    title = "Service account"
    gate_question = "Configure the user '{account}'?"

    def spec(self) -> ServiceAccountSpec:
        """Return the desired account attributes."""
        account = self.config.account
        return ServiceAccountSpec(name=account.name, home=account.home_dir, shell=account.shell)

    def inspect(self) -> InspectionResult:
        """Look the account up and check for the grant file."""
        status = self.account_status()
        grant_path = self.config.sudoers_file
        grant_present = file_present(grant_path)
        details = {
            "user": "present" if status.user_exists else "missing",
            "grant": "present" if grant_present else "missing",
            "grant_path": str(grant_path),
            "grant_mode": format_mode(file_mode(grant_path)),
        }
        if status.uid is not None:
            details["uid"] = str(status.uid)
        if status.home is not None:
            details["home"] = str(status.home)
        return InspectionResult(present=status.user_exists and grant_present, details=details)

    def apply(self, session: SessionState) -> ApplyOutcome:
        """Create the account if absent, then install the grant if absent."""
        reporter = self.context.reporter
        name = self.config.account.name
        reporter.info(f"Configuring the '{name}' user...")
        inspection = self.inspect_or_fail()
        if inspection.present:
            reporter.warn(f"The user '{name}' already exists.")
            reporter.warn(f"The sudoers file for the user '{name}' already exists.")
            return ApplyOutcome.unchanged()

        changed = False
        warnings: list[str] = []
        plan = plan_service_account(self.spec())
        if plan.actions:
            try:
                apply_service_account_plan(plan, runner=self.context.runner)
            except subprocess.CalledProcessError as exc:
                detail = (exc.stderr or exc.stdout or "").strip() or "no output"
                raise ResourceApplyError(
                    ApplyErrorKind.COMMAND_FAILED,
                    f"useradd failed for '{name}' (exit {exc.returncode}): {detail}",
                ) from exc
            except FileNotFoundError as exc:
                raise ResourceApplyError(
                    ApplyErrorKind.COMMAND_FAILED, f"useradd not available: {exc}"
                ) from exc
            reporter.info(f"The user '{name}' has been created.")
            changed = True
        else:
            reporter.warn(f"The user '{name}' already exists.")
        for warning in plan.warnings:
            reporter.warn(warning)
            warnings.append(warning)

        grant_path = self.config.sudoers_file
        if inspection.details.get("grant") == "present":
            reporter.warn(f"The sudoers file for the user '{name}' already exists.")
        else:
            warnings.extend(self._install_grant(grant_path))
            reporter.info(f"Password-free sudo is configured for the user '{name}'.")
            changed = True

        return ApplyOutcome(changed=changed, warnings=tuple(warnings))

    def verify(self) -> HealthStatus:
        """Classify the account and its grant."""
        inspection = verify_inspection(self)
        if isinstance(inspection, HealthStatus):
            return inspection
        name = self.config.account.name
        if inspection.details.get("user") != "present":
            return HealthStatus.fatal(f"User '{name}' doesn't exist.")
        grant_path = self.config.sudoers_file
        if inspection.details.get("grant") != "present":
            return HealthStatus.warning(f"Sudoers grant for '{name}' is missing at {grant_path}.")
        mode = file_mode(grant_path)
        if mode != GRANT_MODE:
            return HealthStatus.warning(
                f"Sudoers grant {grant_path} has mode {format_mode(mode)}, expected 0440."
            )
        if not _grant_mentions(read_text(grant_path), name):
            return HealthStatus.warning(
                f"Sudoers grant {grant_path} does not grant NOPASSWD to '{name}'; "
                "it is never rewritten automatically."
            )
        return HealthStatus.ok()

    # ------------------------------------------------------------------
    def render_grant(self) -> str:
        """Return the grant file content for the managed account."""
        return self.context.templates.render_to_string(
            "sudoers/grant.j2", {"account": self.config.account.name}
        )

    def _install_grant(self, grant_path: Path) -> list[str]:
        content = self.render_grant()
        warnings = self._validate_grant(content)
        self.ensure_directory(grant_path.parent, mode=0o750)
        self.write_file(grant_path, content, mode=GRANT_MODE)
        return warnings

    def _validate_grant(self, content: str) -> list[str]:
        visudo = shutil.which(self.config.sudoers.visudo_bin)
        if visudo is None:
            message = "visudo not found; sudoers grant installed without syntax validation."
            self.context.reporter.warn(message)
            return [message]
        with tempfile.TemporaryDirectory(prefix="pullstrap-sudoers-") as tmp_dir:
            candidate = Path(tmp_dir) / "grant"
            candidate.write_text(content, encoding="utf-8")
            candidate.chmod(GRANT_MODE)
            try:
                self.context.runner([visudo, "-cf", str(candidate)])
            except subprocess.CalledProcessError as exc:
                detail = (exc.stderr or exc.stdout or "").strip() or "no output"
                raise ResourceApplyError(
                    ApplyErrorKind.COMMAND_FAILED,
                    f"visudo rejected the sudoers grant: {detail}",
                ) from exc
        return []


def _grant_mentions(content: str, name: str) -> bool:
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("#") or not stripped:
            continue
        if stripped.split()[0] == name and "NOPASSWD" in stripped:
            return True
    return False


__all__ = ["GRANT_MODE", "ServiceAccountProvisioner"]
