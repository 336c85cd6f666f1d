"""Host preconditions checked before any resource is touched."""
from __future__ import annotations

import os
from collections.abc import Callable
from enum import Enum
from pathlib import Path


class FatalSetupError(RuntimeError):
    """Raised when the host cannot be provisioned at all (privilege, platform)."""


class OsFamily(str, Enum):
    """Operating-system families with a supported package manager."""

    DEBIAN = "debian"
    REDHAT = "redhat"


# Marker files are checked in order; the first match wins.
_RELEASE_MARKERS: tuple[tuple[str, OsFamily], ...] = (
    ("etc/debian_version", OsFamily.DEBIAN),
    ("etc/redhat-release", OsFamily.REDHAT),
)


def ensure_privileged(geteuid: Callable[[], int] = os.geteuid) -> None:
    """Raise :class:`FatalSetupError` unless running as root."""
    if geteuid() != 0:
        raise FatalSetupError("Please, execute pullstrap with sudo.")


def detect_os_family(root: Path = Path("/")) -> OsFamily:
    """Classify the host below *root* by its distribution marker file."""
    for marker, family in _RELEASE_MARKERS:
        if (root / marker).is_file():
            return family
    raise FatalSetupError("Unsupported distribution!")


__all__ = ["FatalSetupError", "OsFamily", "detect_os_family", "ensure_privileged"]
