"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import io
import os
import subprocess
from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest
from rich.console import Console

from pullstrap.bootstrap import service_accounts
from pullstrap.config import AppConfig, load_config
from pullstrap.logging import StructuredLogger
from pullstrap.providers.systemd import SystemdError, SystemdProvider
from pullstrap.reconcile.models import ProvisionContext
from pullstrap.reporting import Reporter
from pullstrap.templates import TemplateEngine

FULL_RUN_ANSWERS: list[bool | str] = [
    True,  # account
    True,  # ssh keys
    True,  # ssh config
    "example.com",
    True,  # vault
    "s3cret",
    True,  # facts
    "webserver",
    True,  # scheduler
    "git@example.com:org/infra.git",
    "",
    "",
]


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class FakeSystemctl:
    """Record ``systemctl`` invocations and emulate timer activation."""

    def __init__(self) -> None:
        """Start with no calls and no active units."""
        self.calls: list[tuple[str, ...]] = []
        self.active: set[str] = set()
        self.fail_commands: set[str] = set()

    def __call__(
        self,
        provider: SystemdProvider,
        command: str,
        *args: str,
        check: bool = True,
    ) -> DummyResult:
        """Handle one call made through ``SystemdProvider._systemctl``."""
        self.calls.append((command, *args))
        if command in self.fail_commands:
            raise SystemdError(f"systemctl {command} failed (exit 1): boom")
        if command == "enable" and "--now" in args:
            self.active.add(args[-1])
        if command == "is-active":
            return DummyResult(returncode=0 if args[-1] in self.active else 3)
        return DummyResult(returncode=0)

    def commands(self) -> list[str]:
        """Return the sub-commands in call order."""
        return [call[0] for call in self.calls]


class RecordingRunner:
    """Command runner that records argv instead of executing it."""

    def __init__(self) -> None:
        """Start with no recorded calls and no configured behaviour."""
        self.calls: list[list[str]] = []
        self._on_call: dict[str, object] = {}

    def on(self, program: str, action: object) -> None:
        """Run *action* (a callable or an exception to raise) for *program*."""
        self._on_call[program] = action

    def programs(self) -> list[str]:
        """Return the program names in call order."""
        return [Path(call[0]).name for call in self.calls]

    def __call__(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        """Record *command* and trigger its configured behaviour."""
        self.calls.append(list(command))
        action = self._on_call.get(Path(command[0]).name)
        if isinstance(action, BaseException):
            raise action
        if callable(action):
            action(command)
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")


class FakeAccounts:
    """In-memory passwd database patched over ``pwd.getpwnam``."""

    def __init__(self) -> None:
        """Start with no accounts."""
        self.entries: dict[str, SimpleNamespace] = {}

    def add(self, name: str, home: Path) -> None:
        """Register *name* owned by the current test user."""
        self.entries[name] = SimpleNamespace(
            pw_name=name,
            pw_uid=os.getuid(),
            pw_gid=os.getgid(),
            pw_dir=str(home),
            pw_shell="/bin/bash",
        )

    def getpwnam(self, name: str) -> SimpleNamespace:
        """Mimic :func:`pwd.getpwnam`."""
        try:
            return self.entries[name]
        except KeyError:
            raise KeyError(f"getpwnam(): name not found: '{name}'") from None


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return a configuration whose managed paths all live under *tmp_path*."""
    return load_config(
        tmp_path / "missing-config.yml",
        env={},
        overrides={
            "logs_dir": str(tmp_path / "logs"),
            "templates_dir": str(tmp_path / "templates"),
            "account": {"home": str(tmp_path / "home" / "ansible")},
            "sudoers": {
                "dir": str(tmp_path / "sudoers.d"),
                "visudo_bin": "pullstrap-test-visudo-missing",
            },
            "facts": {"dir": str(tmp_path / "facts.d")},
            "systemd": {"unit_dir": str(tmp_path / "systemd")},
        },
    )


@pytest.fixture
def accounts(monkeypatch: pytest.MonkeyPatch) -> FakeAccounts:
    """Replace the passwd lookup with an in-memory database."""
    fake = FakeAccounts()
    monkeypatch.setattr(service_accounts.pwd, "getpwnam", fake.getpwnam)
    return fake


@pytest.fixture
def existing_account(accounts: FakeAccounts, app_config: AppConfig) -> FakeAccounts:
    """Register the managed account and create its home directory."""
    app_config.account.home_dir.mkdir(parents=True, exist_ok=True)
    accounts.add(app_config.account.name, app_config.account.home_dir)
    return accounts


@pytest.fixture
def systemctl(monkeypatch: pytest.MonkeyPatch) -> Iterator[FakeSystemctl]:
    """Route every ``systemctl`` call through a recorder."""
    fake = FakeSystemctl()

    def fake_systemctl(
        self: SystemdProvider,
        command: str,
        *args: str,
        check: bool = True,
    ) -> DummyResult:
        return fake(self, command, *args, check=check)

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake_systemctl)
    yield fake


@pytest.fixture
def console_buffer() -> io.StringIO:
    """Return the buffer backing the test console."""
    return io.StringIO()


@pytest.fixture
def reporter(console_buffer: io.StringIO) -> Reporter:
    """Return a reporter writing plain text into :func:`console_buffer`."""
    console = Console(file=console_buffer, width=200, color_system=None, force_terminal=False)
    return Reporter(console)


@pytest.fixture
def runner() -> RecordingRunner:
    """Return a command runner that never executes anything."""
    return RecordingRunner()


@pytest.fixture
def probe_calls() -> list[list[str]]:
    """Collect argv lists handed to the connectivity probe."""
    return []


@pytest.fixture
def provision_context(
    app_config: AppConfig,
    reporter: Reporter,
    runner: RecordingRunner,
    systemctl: FakeSystemctl,
    probe_calls: list[list[str]],
) -> ProvisionContext:
    """Return a provisioning context wired to fakes."""

    def probe_runner(command: list[str], timeout: float) -> subprocess.CompletedProcess[str]:
        probe_calls.append(command)
        return subprocess.CompletedProcess(
            command,
            1,
            stdout="",
            stderr="Welcome to GitLab, @ansible!\n",
        )

    templates = TemplateEngine.with_overrides(app_config.templates_dir)
    return ProvisionContext(
        config=app_config,
        reporter=reporter,
        logger=StructuredLogger(app_config.logs_dir),
        templates=templates,
        systemd=SystemdProvider(
            templates=templates,
            systemd_dir=app_config.systemd.unit_dir,
            unit_name=app_config.systemd.unit_name,
        ),
        runner=runner,
        probe_runner=probe_runner,
        hostname="testhost",
    )
