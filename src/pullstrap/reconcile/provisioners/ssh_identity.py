"""SSH key pair for the service account."""
from __future__ import annotations

from ...providers.ssh import (
    SSHKeyError,
    generate_ed25519,
    public_from_private,
    public_key_matches,
)
from ..base import (
    ResourceReconciler,
    file_mode,
    file_present,
    format_mode,
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

SSH_DIR_MODE = 0o700
PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644


class SSHIdentityProvisioner(ResourceReconciler):
    """Generate an Ed25519 identity once; never overwrite an existing key."""

    kind = ResourceKind.SSH_KEY
    title = "SSH keys"
    gate_question = "Generate SSH keys for the user '{account}'?"

    @property
    def comment(self) -> str:
        """Return the key comment, ``<account>@<hostname>``."""
        return f"{self.config.account.name}@{self.context.hostname}"

    def inspect(self) -> InspectionResult:
        """Check for both halves of the key pair."""
        private_present = file_present(self.config.private_key)
        public_present = file_present(self.config.public_key)
        return InspectionResult(
            present=private_present and public_present,
            details={
                "private_key": "present" if private_present else "missing",
                "public_key": "present" if public_present else "missing",
                "private_mode": format_mode(file_mode(self.config.private_key)),
                "ssh_dir": str(self.config.ssh_dir),
            },
        )

    def apply(self, session: SessionState) -> ApplyOutcome:
        """Generate the pair, or re-derive a missing public half."""
        reporter = self.context.reporter
        inspection = self.inspect_or_fail()
        if inspection.present:
            reporter.warn("SSH keys already exist.")
            return ApplyOutcome.unchanged()

        owner = self.require_account()
        self.ensure_directory(self.config.ssh_dir, mode=SSH_DIR_MODE, owner=owner)

        if inspection.details.get("private_key") == "present":
            try:
                public = public_from_private(self.config.private_key.read_bytes(), self.comment)
            except (OSError, SSHKeyError) as exc:
                raise ResourceApplyError(
                    ApplyErrorKind.INSPECTION_FAILED,
                    f"Cannot derive a public key from {self.config.private_key}: {exc}",
                ) from exc
            self.write_file(
                self.config.public_key, public.decode("ascii"), mode=PUBLIC_KEY_MODE, owner=owner
            )
            message = f"Public key was missing and has been re-derived at {self.config.public_key}."
            reporter.warn(message)
            reporter.raw(public.decode("ascii").rstrip("\n"))
            return ApplyOutcome.applied(message)

        material = generate_ed25519(self.comment)
        self.write_file(
            self.config.private_key,
            material.private.decode("ascii"),
            mode=PRIVATE_KEY_MODE,
            owner=owner,
        )
        self.write_file(
            self.config.public_key,
            material.public.decode("ascii"),
            mode=PUBLIC_KEY_MODE,
            owner=owner,
        )
        reporter.info("SSH keys have been generated. Copy the public key below.")
        reporter.raw(material.public.decode("ascii").rstrip("\n"))
        return ApplyOutcome.applied()

    def verify(self) -> HealthStatus:
        """Classify the key pair; a mismatched public key is degraded."""
        inspection = verify_inspection(self)
        if isinstance(inspection, HealthStatus):
            return inspection
        if not inspection.present:
            return HealthStatus.warning(f"Can't find SSH keys at {self.config.ssh_dir}")
        mode = file_mode(self.config.private_key)
        if mode is not None and mode & 0o077:
            return HealthStatus.warning(
                f"Private key {self.config.private_key} has mode {format_mode(mode)}; "
                "it must not be accessible by group or others."
            )
        try:
            private = self.config.private_key.read_bytes()
            public = self.config.public_key.read_bytes()
        except PermissionError as exc:
            return HealthStatus.fatal(f"Inspection failed: cannot read SSH keys: {exc}")
        if not public_key_matches(private, public):
            return HealthStatus.warning(
                f"Public key {self.config.public_key} does not match the private key."
            )
        return HealthStatus.ok()


__all__ = ["SSHIdentityProvisioner"]
