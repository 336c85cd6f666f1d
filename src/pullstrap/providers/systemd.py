"""Systemd provider for the pull agent's service and timer units."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import TemplateEngine


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Render and manage the one-shot service and its recurring timer."""

    templates: TemplateEngine
    systemd_dir: Path = Path("/etc/systemd/system")
    unit_name: str = "ansible-pull"
    systemctl_bin: str = "systemctl"

    @property
    def service_name(self) -> str:
        """Return the execution unit name."""
        return f"{self.unit_name}.service"

    @property
    def timer_name(self) -> str:
        """Return the timer unit name."""
        return f"{self.unit_name}.timer"

    @property
    def service_path(self) -> Path:
        """Return the full path for the execution unit file."""
        return self.systemd_dir / self.service_name

    @property
    def timer_path(self) -> Path:
        """Return the full path for the timer unit file."""
        return self.systemd_dir / self.timer_name

    def render_service(self, context: Mapping[str, object]) -> str:
        """Return the execution unit text for *context* without writing it."""
        return self.templates.render_to_string("systemd/service.j2", context)

    def render_timer(self, context: Mapping[str, object]) -> str:
        """Return the timer unit text for *context* without writing it."""
        return self.templates.render_to_string("systemd/timer.j2", context)

    def install_units(
        self,
        service_context: Mapping[str, object],
        timer_context: Mapping[str, object],
    ) -> tuple[bool, bool]:
        """Write both unit files; reload the daemon once if either changed."""
        service_changed = self.templates.render_to_path(
            "systemd/service.j2", self.service_path, service_context, mode=0o644
        )
        timer_changed = self.templates.render_to_path(
            "systemd/timer.j2", self.timer_path, timer_context, mode=0o644
        )
        if service_changed or timer_changed:
            self.daemon_reload()
        return service_changed, timer_changed

    def daemon_reload(self) -> None:
        """Ask the service manager to re-read unit files."""
        self._systemctl("daemon-reload")

    def enable_now(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Enable *unit* and start it immediately."""
        return self._systemctl("enable", "--now", unit)

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is currently active."""
        result = self._systemctl("is-active", "--quiet", unit, check=False)
        return result.returncode == 0

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        *args: str,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        argv: list[str] = [self.systemctl_bin, command, *args]
        return self._run_command(
            argv,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider"]
