"""Typer-powered command line entry point for ``pullstrap``.

Running ``pullstrap`` without a sub-command performs the full interactive
bootstrap: privilege and platform checks, package installation, the gated
provisioning steps and a final environment check. ``pullstrap check`` only
runs the environment check.
"""
from __future__ import annotations

import os
import socket
import subprocess
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console

from . import __version__
from .bootstrap import (
    FatalSetupError,
    PackageInstaller,
    PackageInstallError,
    detect_os_family,
    ensure_privileged,
)
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .prompts import Prompter, TerminalPrompter
from .providers import SystemdProvider
from .reconcile import (
    HealthChecker,
    HealthReport,
    Orchestrator,
    ProvisionContext,
    SessionState,
    build_provisioners,
    report_health,
)
from .reporting import Reporter
from .templates import TemplateEngine

console = Console()

# Root of the filesystem inspected for distribution marker files.
HOST_ROOT = Path("/")

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to pullstrap's YAML config file.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Bootstrap a host for recurring ansible-pull runs.

        Without a sub-command, installs dependencies, walks through each
        provisioning step behind a yes/no question and finishes with an
        environment check.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    systemd_provider: SystemdProvider
    reporter: Reporter
    provision: ProvisionContext


def _run_command(command: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603
        command,
        check=True,
        capture_output=True,
        text=True,
    )


def _make_prompter() -> Prompter:
    return TerminalPrompter()


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    systemd_provider = SystemdProvider(
        templates=templates,
        systemd_dir=config.systemd.unit_dir,
        unit_name=config.systemd.unit_name,
        systemctl_bin=config.systemd.systemctl_bin,
    )
    reporter = Reporter(console)
    provision = ProvisionContext(
        config=config,
        reporter=reporter,
        logger=logger,
        templates=templates,
        systemd=systemd_provider,
        runner=_run_command,
        hostname=socket.gethostname(),
    )
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        systemd_provider=systemd_provider,
        reporter=reporter,
        provision=provision,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _setup_error(op: OperationScope, reporter: Reporter, message: str) -> NoReturn:
    """Report a fatal precondition failure and terminate with the setup code."""
    reporter.error(message)
    op.error(message)
    raise typer.Exit(code=ExitCode.SETUP)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the pullstrap version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"pullstrap {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    runtime = _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        _setup(runtime)
        raise typer.Exit(code=ExitCode.OK)


def _setup(runtime: RuntimeContext) -> None:
    reporter = runtime.reporter
    with runtime.logger.operation(
        "setup preconditions",
        target={"kind": "system", "scope": "host"},
    ) as op:
        try:
            ensure_privileged(os.geteuid)
            family = detect_os_family(HOST_ROOT)
        except FatalSetupError as exc:
            _setup_error(op, reporter, str(exc))
        op.success("Host preconditions satisfied.", context={"family": family.value})

    reporter.info("Checking and installing dependencies...")
    installer = PackageInstaller(family, runner=_run_command)
    with runtime.logger.operation(
        "install-packages",
        args={"family": family.value},
        target={"kind": "system", "scope": "packages"},
    ) as op:
        try:
            installer.install()
        except PackageInstallError as exc:
            reporter.error(f"Dependency installation failed: {exc}")
            op.error(str(exc), context={"commands": installer.executed})
        else:
            reporter.info("Dependencies are installed.")
            op.success("Dependencies installed.", context={"commands": installer.executed})

    prompter = _make_prompter()
    session = SessionState(account=runtime.config.account.name)
    provisioners = build_provisioners(runtime.provision)
    if prompter.confirm("Set up this environment for ansible-pull?"):
        run = Orchestrator(
            provisioners,
            prompter=prompter,
            reporter=reporter,
            logger=runtime.logger,
        ).run(session)
        if run.failed:
            failed = ", ".join(step.kind.value for step in run.failed)
            reporter.warn(f"Configuration finished with failed steps: {failed}.")
        else:
            reporter.info("Configuration is complete.")
    else:
        reporter.info("Skipping environment setup.")

    reporter.info("Performing environment check...")
    _check(runtime, session)
    reporter.info("Done")


def _check(runtime: RuntimeContext, session: SessionState | None = None) -> HealthReport:
    provisioners = build_provisioners(runtime.provision)
    report = HealthChecker(provisioners, runtime.provision).run(session)
    report_health(report, runtime.reporter)
    return report


@app.command()
def check(ctx: typer.Context) -> None:
    """Report the health of every managed resource without changing anything."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check preconditions",
        target={"kind": "system", "scope": "host"},
    ) as op:
        try:
            ensure_privileged(os.geteuid)
        except FatalSetupError as exc:
            _setup_error(op, runtime.reporter, str(exc))
        op.success("Running with sufficient privilege.")
    _check(runtime)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "check", "main"]
