"""Azure provisioning: ARM/blob gateways, deployment submission, inventory, teardown."""

from imagedock.provisioning.arm import ArmClient
from imagedock.provisioning.blob import BlobClient
from imagedock.provisioning.credentials import make_token_provider
from imagedock.provisioning.deployment import delete_deployment, deploy
from imagedock.provisioning.disks import disk_references_from_vm, dispose_disk, dispose_disks
from imagedock.provisioning.inventory import list_created_resources
from imagedock.provisioning.retry import RetryPolicy, run_with_retry
from imagedock.provisioning.teardown import partition_inventory, teardown, teardown_key_vault
from imagedock.provisioning.types import (
    CleanupReport,
    DeploymentHandle,
    DiskKind,
    DiskReference,
    Outcome,
    ResourceDescriptor,
)

__all__ = [
    "ArmClient",
    "BlobClient",
    "make_token_provider",
    "deploy",
    "delete_deployment",
    "list_created_resources",
    "disk_references_from_vm",
    "dispose_disk",
    "dispose_disks",
    "RetryPolicy",
    "run_with_retry",
    "partition_inventory",
    "teardown",
    "teardown_key_vault",
    "CleanupReport",
    "DeploymentHandle",
    "DiskKind",
    "DiskReference",
    "Outcome",
    "ResourceDescriptor",
]
