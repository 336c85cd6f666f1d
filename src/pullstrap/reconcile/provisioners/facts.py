"""Local custom facts describing the host's role."""
from __future__ import annotations

import json

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

FACTS_DIR_MODE = 0o755
FACTS_FILE_MODE = 0o644


def render_facts(roles: str) -> str:
    """Return the facts document for *roles*."""
    return json.dumps({"role": roles}) + "\n"


class HostFactsProvisioner(ResourceReconciler):
    """Record free-form role tags where the pull agent picks up local facts."""

    kind = ResourceKind.HOST_FACTS
    title = "Custom facts"
    gate_question = "Do you want to set specific roles/facts for this host?"

    def inspect(self) -> InspectionResult:
        """Check for the facts document."""
        path = self.config.facts_file
        return InspectionResult(
            present=file_present(path),
            details={"path": str(path), "mode": format_mode(file_mode(path))},
        )

    def collect(self, session: SessionState, prompter: Prompter) -> None:
        """Read the role text, re-asking the gate when it is empty."""
        session.host_roles = confirm_until_valid(
            prompter,
            self.gate_prompt,
            lambda: prompter.ask("Enter host roles (e.g. webserver, db, k8s-worker)"),
            on_empty="Input can't be empty!",
            on_decline="Custom facts setup skipped.",
            report=self.context.reporter.error,
        )

    def apply(self, session: SessionState) -> ApplyOutcome:
        """Write the facts document; identical content is left alone."""
        if not session.host_roles:
            return ApplyOutcome.unchanged("No host roles supplied.")
        path = self.config.facts_file
        self.ensure_directory(path.parent, mode=FACTS_DIR_MODE)
        changed = self.write_file(path, render_facts(session.host_roles), mode=FACTS_FILE_MODE)
        if changed:
            self.context.reporter.info(f"Custom facts written to {path}")
        else:
            self.context.reporter.info(f"Custom facts at {path} are already up to date.")
        return ApplyOutcome(changed=changed)

    def verify(self) -> HealthStatus:
        """Classify the facts document."""
        inspection = verify_inspection(self)
        if isinstance(inspection, HealthStatus):
            return inspection
        path = self.config.facts_file
        if not inspection.present:
            return HealthStatus.warning(f"Can't find custom facts at {path}.")
        mode = file_mode(path)
        if mode != FACTS_FILE_MODE:
            return HealthStatus.warning(
                f"Custom facts {path} have mode {format_mode(mode)}, expected 0644."
            )
        try:
            document = json.loads(read_text(path))
        except InspectionError as exc:
            return HealthStatus.fatal(f"Inspection failed: {exc}")
        except json.JSONDecodeError as exc:
            return HealthStatus.warning(f"Custom facts {path} are not valid JSON: {exc}")
        if not isinstance(document, dict) or not isinstance(document.get("role"), str):
            return HealthStatus.warning(f"Custom facts {path} lack a string 'role' entry.")
        return HealthStatus.ok()


__all__ = ["HostFactsProvisioner", "render_facts"]
