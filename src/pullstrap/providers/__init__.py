"""Provider interfaces for pullstrap."""
from __future__ import annotations

from .ssh import KeyMaterial, ProbeOutcome, SSHKeyError
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "KeyMaterial",
    "ProbeOutcome",
    "SSHKeyError",
    "SystemdError",
    "SystemdProvider",
]
