"""System package installation for the pull agent's dependencies."""
from __future__ import annotations

import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field

from .host import OsFamily

Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]

DEBIAN_PACKAGES: tuple[str, ...] = (
    "git",
    "python3",
    "python3-pip",
    "ansible",
    "software-properties-common",
)
REDHAT_PACKAGES: tuple[str, ...] = ("git", "python3", "python3-pip", "ansible")


class PackageInstallError(RuntimeError):
    """Raised when the package manager fails."""


@dataclass(slots=True)
class PackageInstaller:
    """Install the fixed dependency set with the family's package manager."""

    family: OsFamily
    runner: Runner | None = None
    executed: list[list[str]] = field(default_factory=list)

    def plan(self) -> list[list[str]]:
        """Return the commands that unconditionally run for this family."""
        if self.family is OsFamily.DEBIAN:
            return [
                ["apt-get", "-qq", "update"],
                ["apt-get", "-qq", "install", "-y", *DEBIAN_PACKAGES],
            ]
        return [["dnf", "install", "-y", *REDHAT_PACKAGES]]

    def install(self) -> None:
        """Run the install commands, enabling EPEL first on the RedHat family."""
        if self.family is OsFamily.REDHAT and not self._epel_installed():
            self._run(["dnf", "install", "-y", "epel-release"])
        for command in self.plan():
            self._run(command)

    def _epel_installed(self) -> bool:
        command = ["rpm", "-q", "epel-release"]
        self.executed.append(command)
        try:
            result = self._runner()(command)
        except (subprocess.CalledProcessError, FileNotFoundError):
            return False
        return result.returncode == 0

    def _run(self, command: list[str]) -> None:
        self.executed.append(command)
        try:
            self._runner()(command)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip() or "no output"
            raise PackageInstallError(
                f"{' '.join(command)} failed (exit {exc.returncode}): {detail}"
            ) from exc
        except FileNotFoundError as exc:
            raise PackageInstallError(f"{command[0]} not found: {exc}") from exc

    def _runner(self) -> Runner:
        return self.runner or _default_runner


def _default_runner(command: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(command, check=True, capture_output=True, text=True)  # noqa: S603,S607


__all__ = ["PackageInstallError", "PackageInstaller", "Runner"]
