"""Shared data types for deployments, resources, disks and cleanup outcomes."""

import logging
from dataclasses import dataclass, field
from enum import Enum

VIRTUAL_MACHINE = "Microsoft.Compute/virtualMachines"
MANAGED_DISK = "Microsoft.Compute/disks"
NETWORK_INTERFACE = "Microsoft.Network/networkInterfaces"
VIRTUAL_NETWORK = "Microsoft.Network/virtualNetworks"
NETWORK_SECURITY_GROUP = "Microsoft.Network/networkSecurityGroups"
PUBLIC_IP_ADDRESS = "Microsoft.Network/publicIPAddresses"
KEY_VAULT = "Microsoft.KeyVault/vaults"
VHD_BLOB = "Microsoft.Storage/blob"
DEPLOYMENT = "Microsoft.Resources/deployments"


@dataclass(frozen=True)
class DeploymentHandle:
    """One ARM template submission, keyed by subscription/group/name."""

    subscription_id: str
    resource_group: str
    deployment_name: str

    @property
    def resource_id(self) -> str:
        return (
            f"/subscriptions/{self.subscription_id}/resourcegroups/{self.resource_group}"
            f"/providers/{DEPLOYMENT}/{self.deployment_name}"
        )

    def to_dict(self) -> dict:
        return {
            "subscription_id": self.subscription_id,
            "resource_group": self.resource_group,
            "deployment_name": self.deployment_name,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DeploymentHandle":
        return cls(d["subscription_id"], d["resource_group"], d["deployment_name"])


@dataclass(frozen=True)
class ResourceDescriptor:
    """A concrete resource created as a side effect of a deployment."""

    kind: str
    name: str
    resource_group: str
    subscription_id: str = ""

    @property
    def resource_id(self) -> str:
        return f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}/providers/{self.kind}/{self.name}"


class DiskKind(Enum):
    MANAGED = "managed"
    BLOB = "blob"


@dataclass(frozen=True)
class DiskReference:
    """OS or data disk of the build VM, derived from its storage profile.

    ``identifier`` is a managed disk resource ID or a VHD blob URI.
    ``container_or_group`` is the resource group for managed disks and the
    storage container for blobs. ``lun`` is None for the OS disk.
    """

    kind: DiskKind
    identifier: str
    subscription_id: str
    container_or_group: str
    is_managed_build: bool = False
    is_catalog_sourced_build: bool = False
    keep_disk: bool = False
    lun: int | None = None

    @property
    def uses_managed_delete(self) -> bool:
        """True when the disk is removed through ARM rather than the blob service.

        A VHD URI always goes through the blob service. The build flags only
        decide for a bare blob identifier, since managed and gallery-sourced
        builds produce managed disks.
        """
        if self.kind is DiskKind.MANAGED:
            return True
        if "://" in self.identifier:
            return False
        return self.is_managed_build or self.is_catalog_sourced_build

    @property
    def delete_kind(self) -> str:
        return MANAGED_DISK if self.uses_managed_delete else VHD_BLOB

    @property
    def name(self) -> str:
        return self.identifier.rstrip("/").rsplit("/", 1)[-1]

    @property
    def label(self) -> str:
        return "OS disk" if self.lun is None else f"data disk (lun {self.lun})"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "identifier": self.identifier,
            "subscription_id": self.subscription_id,
            "container_or_group": self.container_or_group,
            "is_managed_build": self.is_managed_build,
            "is_catalog_sourced_build": self.is_catalog_sourced_build,
            "keep_disk": self.keep_disk,
            "lun": self.lun,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DiskReference":
        return cls(
            kind=DiskKind(d["kind"]),
            identifier=d["identifier"],
            subscription_id=d["subscription_id"],
            container_or_group=d["container_or_group"],
            is_managed_build=d.get("is_managed_build", False),
            is_catalog_sourced_build=d.get("is_catalog_sourced_build", False),
            keep_disk=d.get("keep_disk", False),
            lun=d.get("lun"),
        )


@dataclass
class Outcome:
    """Result of one resource's cleanup."""

    kind: str
    name: str
    succeeded: bool
    error: str | None = None


@dataclass
class CleanupReport:
    """Aggregated per-resource outcomes of one cleanup run.

    ``kept_disks`` holds the DiskReferences left in place (keep_os_disk),
    which become the build's artifact.
    """

    outcomes: list[Outcome] = field(default_factory=list)
    kept_disks: list[DiskReference] = field(default_factory=list)

    def add(self, outcome: Outcome):
        self.outcomes.append(outcome)

    @property
    def failures(self) -> list[Outcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def log_summary(self, logger: logging.Logger):
        """Log one line per failed resource so it can be removed by hand."""
        if self.succeeded:
            logger.info(f"Cleanup finished: {len(self.outcomes)} resource(s) handled, no failures.")
            return
        logger.error(f"Cleanup finished with {len(self.failures)} failure(s). Please delete these manually:")
        for o in self.failures:
            logger.error(f"  {o.kind} : '{o.name}' -> {o.error}")
