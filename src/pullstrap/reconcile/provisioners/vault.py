"""Vault password file for encrypted playbooks."""
from __future__ import annotations

from ...prompts import Prompter
from ..base import (
    ResourceReconciler,
    confirm_until_valid,
    file_mode,
    file_present,
    format_mode,
    read_text,
    verify_inspection,
)
from ..models import (
    ApplyOutcome,
    HealthStatus,
    InspectionError,
    InspectionResult,
    ResourceKind,
    SessionState,
)

VAULT_DIR_MODE = 0o700
VAULT_FILE_MODE = 0o400


class VaultSecretProvisioner(ResourceReconciler):
    """Store the vault password owner-read-only in the account home."""

    kind = ResourceKind.VAULT_SECRET
    title = "Vault password"
    gate_question = "Do you want to enter the vault password?"

    def declined_message(self) -> str:
        """Remind the operator where the secret is expected."""
        return (
            "Vault password setup skipped. Don't forget to create it manually at "
            f"{self.config.vault_password_file}."
        )

    def inspect(self) -> InspectionResult:
        """Check for the secret file; its content is never reported."""
        path = self.config.vault_password_file
        return InspectionResult(
            present=file_present(path),
            details={"path": str(path), "mode": format_mode(file_mode(path))},
        )

    def collect(self, session: SessionState, prompter: Prompter) -> None:
        """Read the hidden secret, re-asking the gate when it is empty."""
        session.vault_password = confirm_until_valid(
            prompter,
            self.gate_prompt,
            lambda: prompter.secret("Enter vault password (input will be hidden)"),
            on_empty="Vault password can't be empty!",
            on_decline=self.declined_message(),
            report=self.context.reporter.error,
        )

    def apply(self, session: SessionState) -> ApplyOutcome:
        """Write the secret; an identical stored secret is left alone."""
        if not session.vault_password:
            return ApplyOutcome.unchanged("No vault password supplied.")
        owner = self.require_account()
        path = self.config.vault_password_file
        if self.ensure_directory(path.parent, mode=VAULT_DIR_MODE, owner=owner):
            self.context.reporter.info(f"Created directory {path.parent}.")
        changed = self.write_file(
            path, session.vault_password + "\n", mode=VAULT_FILE_MODE, owner=owner
        )
        if changed:
            self.context.reporter.info(f"Vault password saved to {path}")
        else:
            self.context.reporter.info(f"Vault password at {path} is already up to date.")
        return ApplyOutcome(changed=changed)

    def verify(self) -> HealthStatus:
        """Classify the secret file."""
        inspection = verify_inspection(self)
        if isinstance(inspection, HealthStatus):
            return inspection
        path = self.config.vault_password_file
        if not inspection.present:
            return HealthStatus.warning(
                f"Can't find vault password at {path}. "
                "Service might fail if your playbook is encrypted."
            )
        mode = file_mode(path)
        if mode != VAULT_FILE_MODE:
            return HealthStatus.warning(
                f"Vault password {path} has mode {format_mode(mode)}, expected 0400."
            )
        try:
            content = read_text(path)
        except InspectionError as exc:
            return HealthStatus.fatal(f"Inspection failed: {exc}")
        if not content.strip():
            return HealthStatus.warning(f"Vault password file {path} is empty.")
        return HealthStatus.ok()


__all__ = ["VaultSecretProvisioner"]
