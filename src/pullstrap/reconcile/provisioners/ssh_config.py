"""SSH client configuration binding the git host to the managed key."""
from __future__ import annotations

import shutil
from datetime import UTC, datetime
from pathlib import Path

from ...bootstrap.service_accounts import ServiceAccountStatus, chown_to_account
from ...prompts import Prompter
from ...providers.ssh import (
    configured_hosts,
    first_configured_host,
    join_stanzas,
    merge_host_stanza,
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
    InspectionError,
    InspectionResult,
    ResourceApplyError,
    ResourceKind,
    SessionState,
)
from .ssh_identity import SSH_DIR_MODE

CONFIG_MODE = 0o600


def _backup_stamp() -> str:
    return datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S%fZ")


class SSHHostConfigProvisioner(ResourceReconciler):
    """Write the ``Host`` stanza for the git host.

    With the ``replace`` strategy an accepted gate always rewrites the whole
    file; stanzas for other hosts are reported and the previous file is kept
    as ``config.bak.<timestamp>``. The ``merge`` strategy only touches the
    stanza for the chosen host.
    """

    kind = ResourceKind.SSH_HOST_CONFIG
    title = "SSH config"
    gate_question = "Configure SSH config for a git host?"

    def inspect(self) -> InspectionResult:
        """Check for the config file and list its concrete hosts."""
        path = self.config.ssh_config_file
        present = file_present(path)
        details = {
            "path": str(path),
            "mode": format_mode(file_mode(path)),
        }
        if present:
            details["hosts"] = ",".join(configured_hosts(read_text(path)))
        return InspectionResult(present=present, details=details)

    def collect(self, session: SessionState, prompter: Prompter) -> None:
        """Ask for the git host domain."""
        default = self.config.ssh.default_git_host
        session.git_host = prompter.ask(
            f"Enter a domain name (default: {default})", default=default
        ).strip() or default

    def apply(self, session: SessionState) -> ApplyOutcome:
        """Render the stanza and write it according to the configured strategy."""
        reporter = self.context.reporter
        host = session.git_host or self.config.ssh.default_git_host
        inspection = self.inspect_or_fail()
        owner = self.require_account()
        path = self.config.ssh_config_file
        stanza = self.render_stanza(host)
        existing = read_text(path) if inspection.present else ""

        warnings: list[str] = []
        if self.config.ssh.config_strategy == "merge":
            content = merge_host_stanza(existing, host, stanza)
        else:
            content = join_stanzas([stanza])
            if existing and existing != content:
                dropped = [item for item in configured_hosts(existing) if item != host]
                if dropped:
                    backup = self._back_up(path, owner)
                    message = (
                        f"Replacing {path} drops stanzas for: {', '.join(dropped)}. "
                        f"Previous file saved as {backup}."
                    )
                    reporter.warn(message)
                    warnings.append(message)

        self.ensure_directory(self.config.ssh_dir, mode=SSH_DIR_MODE, owner=owner)
        changed = self.write_file(path, content, mode=CONFIG_MODE, owner=owner)
        if changed:
            reporter.info("SSH config has been updated.")
        else:
            reporter.info(f"SSH config already binds {host} to {self.config.private_key}.")
        return ApplyOutcome(changed=changed, warnings=tuple(warnings))

    def verify(self) -> HealthStatus:
        """Classify the config file."""
        inspection = verify_inspection(self)
        if isinstance(inspection, HealthStatus):
            return inspection
        path = self.config.ssh_config_file
        if not inspection.present:
            return HealthStatus.warning(f"Can't find SSH config at {path.parent}")
        mode = file_mode(path)
        if mode != CONFIG_MODE:
            return HealthStatus.warning(
                f"SSH config {path} has mode {format_mode(mode)}, expected 0600."
            )
        if not inspection.details.get("hosts"):
            return HealthStatus.warning(f"No Host stanza found in {path}.")
        return HealthStatus.ok()

    # ------------------------------------------------------------------
    def render_stanza(self, host: str) -> str:
        """Return the ``Host`` stanza for *host*."""
        return self.context.templates.render_to_string(
            "ssh/host.j2",
            {"host": host, "identity_file": str(self.config.private_key)},
        )

    def configured_host(self) -> str | None:
        """Return the first concrete host in the config file, if readable."""
        path = self.config.ssh_config_file
        try:
            if not file_present(path):
                return None
            return first_configured_host(read_text(path))
        except InspectionError:
            return None

    def _back_up(self, path: Path, owner: ServiceAccountStatus) -> Path:
        stamp = _backup_stamp()
        backup_path = path.with_name(f"{path.name}.bak.{stamp}")
        counter = 1
        while backup_path.exists():
            backup_path = path.with_name(f"{path.name}.bak.{stamp}.{counter}")
            counter += 1
        try:
            shutil.copy2(path, backup_path)
            backup_path.chmod(CONFIG_MODE)
            chown_to_account(backup_path, owner)
        except OSError as exc:
            raise ResourceApplyError(
                ApplyErrorKind.WRITE_FAILED, f"Failed to back up {path}: {exc}"
            ) from exc
        return backup_path


__all__ = ["CONFIG_MODE", "SSHHostConfigProvisioner"]
