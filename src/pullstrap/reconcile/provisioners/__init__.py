"""Concrete provisioners, one per managed resource kind."""
from __future__ import annotations

from ..base import ResourceReconciler
from ..models import ProvisionContext
from .account import ServiceAccountProvisioner
from .facts import HostFactsProvisioner
from .scheduler import SchedulerUnitProvisioner
from .ssh_config import SSHHostConfigProvisioner
from .ssh_identity import SSHIdentityProvisioner
from .vault import VaultSecretProvisioner

PROVISIONER_ORDER: tuple[type[ResourceReconciler], ...] = (
    ServiceAccountProvisioner,
    SSHIdentityProvisioner,
    SSHHostConfigProvisioner,
    VaultSecretProvisioner,
    HostFactsProvisioner,
    SchedulerUnitProvisioner,
)


def build_provisioners(context: ProvisionContext) -> list[ResourceReconciler]:
    """Instantiate every provisioner in dependency order."""
    return [factory(context) for factory in PROVISIONER_ORDER]


__all__ = [
    "PROVISIONER_ORDER",
    "HostFactsProvisioner",
    "SSHHostConfigProvisioner",
    "SSHIdentityProvisioner",
    "SchedulerUnitProvisioner",
    "ServiceAccountProvisioner",
    "VaultSecretProvisioner",
    "build_provisioners",
]
