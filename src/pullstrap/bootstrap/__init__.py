"""Helper utilities used before and during host provisioning."""
from __future__ import annotations

from .host import FatalSetupError, OsFamily, detect_os_family, ensure_privileged
from .packages import PackageInstaller, PackageInstallError
from .service_accounts import (
    ServiceAccountAction,
    ServiceAccountPlan,
    ServiceAccountSpec,
    ServiceAccountStatus,
    apply_service_account_plan,
    chown_to_account,
    inspect_service_account,
    plan_service_account,
)

__all__ = [
    # host preconditions
    "FatalSetupError",
    "OsFamily",
    "detect_os_family",
    "ensure_privileged",
    # package installation
    "PackageInstallError",
    "PackageInstaller",
    # service account helpers
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "apply_service_account_plan",
    "chown_to_account",
    "inspect_service_account",
    "plan_service_account",
]
