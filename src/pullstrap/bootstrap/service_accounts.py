"""Utilities for inspecting and planning the pull agent's service account."""
from __future__ import annotations

import grp
import os
import pwd
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal


@dataclass(slots=True)
class ServiceAccountSpec:
    """Desired attributes for the service account."""

    name: str
    home: Path
    shell: str = "/bin/bash"


@dataclass(slots=True)
class ServiceAccountStatus:
    """Current state of the service account on the host."""

    user_exists: bool
    uid: int | None = None
    gid: int | None = None
    home: Path | None = None
    shell: str | None = None
    primary_group: str | None = None


@dataclass(slots=True)
class ServiceAccountAction:
    """Single remediation step required to satisfy the desired state."""

    kind: Literal["create-user"]
    description: str
    command: list[str] | None = None


@dataclass(slots=True)
class ServiceAccountPlan:
    """Aggregated actions and warnings required to reach the desired account."""

    spec: ServiceAccountSpec
    status: ServiceAccountStatus
    actions: list[ServiceAccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def inspect_service_account(name: str) -> ServiceAccountStatus:
    """Return the current status for account *name* from the passwd database."""
    try:
        pw_entry = pwd.getpwnam(name)
    except KeyError:
        return ServiceAccountStatus(user_exists=False)

    try:
        primary_group = grp.getgrgid(pw_entry.pw_gid).gr_name
    except KeyError:
        primary_group = None
    return ServiceAccountStatus(
        user_exists=True,
        uid=pw_entry.pw_uid,
        gid=pw_entry.pw_gid,
        home=Path(pw_entry.pw_dir),
        shell=pw_entry.pw_shell,
        primary_group=primary_group,
    )


def plan_service_account(spec: ServiceAccountSpec) -> ServiceAccountPlan:
    """Return a plan describing how to satisfy *spec* on the current host."""
    status = inspect_service_account(spec.name)
    plan = ServiceAccountPlan(spec=spec, status=status)

    if not status.user_exists:
        command = [
            "useradd",
            "--create-home",
            "--home-dir",
            str(spec.home),
            "--shell",
            spec.shell,
            spec.name,
        ]
        plan.actions.append(
            ServiceAccountAction(
                kind="create-user",
                description=f"Create service user '{spec.name}'.",
                command=command,
            )
        )
        return plan

    if status.home and status.home != spec.home:
        plan.warnings.append(
            f"User '{spec.name}' home '{status.home}' differs from desired '{spec.home}'."
        )
    if status.shell and str(status.shell) != str(spec.shell):
        plan.warnings.append(
            f"User '{spec.name}' shell '{status.shell}' differs from desired '{spec.shell}'."
        )
    return plan


Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]


def apply_service_account_plan(
    plan: ServiceAccountPlan,
    *,
    runner: Runner | None = None,
) -> None:
    """Execute the commands described by *plan*."""
    if runner is None:
        runner = _default_runner

    for action in plan.actions:
        if action.command is None:
            continue
        runner(action.command)


def chown_to_account(path: Path, status: ServiceAccountStatus) -> None:
    """Give *path* to the account described by *status* (no-op when unknown)."""
    if status.uid is None or status.gid is None:
        return
    info = path.lstat()
    if info.st_uid == status.uid and info.st_gid == status.gid:
        return
    os.chown(path, status.uid, status.gid, follow_symlinks=False)


def _default_runner(command: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(command, check=True, capture_output=True, text=True)  # noqa: S603,S607


__all__ = [
    "Runner",
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "apply_service_account_plan",
    "chown_to_account",
    "inspect_service_account",
    "plan_service_account",
]
