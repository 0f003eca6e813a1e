"""Teardown coordination: delete a deployment's resources in dependency order.

Order of deletion:
    1. Virtual machine (synchronously)
    2. Network interface (synchronously; it cannot be deleted while attached)
    3. Everything else, concurrently, one task per resource
    4. OS and data disks, per the disk disposition policy
    5. The deployment object itself, always, even if earlier steps failed

Every resource deletion runs under the retry policy. A failure is recorded
in the report and cleanup carries on; nothing here raises for a single
resource. When the overall timeout cancels the run, each resource that was
not handled yet is reported as a failure by name.
"""

import asyncio
import logging

from imagedock.provisioning.deletables import DEFAULT_DELETE_TIMEOUT, make_deletable
from imagedock.provisioning.deployment import DEFAULT_POLLING_DURATION, delete_deployment
from imagedock.provisioning.disks import dispose_disks
from imagedock.provisioning.errors import ResourceNotFoundError, UnsupportedResourceError
from imagedock.provisioning.retry import RetryPolicy, report_deletion_failure, run_with_retry
from imagedock.provisioning.types import (
    DEPLOYMENT,
    KEY_VAULT,
    MANAGED_DISK,
    NETWORK_INTERFACE,
    VHD_BLOB,
    VIRTUAL_MACHINE,
    CleanupReport,
    DeploymentHandle,
    Outcome,
)

logger = logging.getLogger(__name__)

DISK_KINDS = (MANAGED_DISK, VHD_BLOB)
CANCELLED = "cancelled: cleanup timeout"


def partition_inventory(inventory, foreign_names=()):
    """Split *inventory* into (vms, nics, rest).

    Resources whose name appears in *foreign_names* (pre-existing resources
    the build only referenced, such as a bring-your-own security group) are
    dropped from *rest* so they are never deleted. Disks are dropped too:
    they are removed or kept only through disk disposition, which honours
    keep_os_disk.
    """
    foreign = {name for name in foreign_names if name}
    vms, nics, rest = [], [], []
    for descriptor in inventory:
        if descriptor.kind == VIRTUAL_MACHINE:
            vms.append(descriptor)
        elif descriptor.kind == NETWORK_INTERFACE:
            nics.append(descriptor)
        elif descriptor.kind in DISK_KINDS:
            logger.info(f"Leaving {descriptor.kind} '{descriptor.name}' to disk disposition")
        elif descriptor.name in foreign:
            logger.info(f"Skipping {descriptor.kind} '{descriptor.name}': not created by this build")
        else:
            rest.append(descriptor)
    return vms, nics, rest


async def _delete_one(client, descriptor, policy, ui, attempt_timeout, delete_timeout, sleep):
    try:
        deletable = make_deletable(client, descriptor, timeout=delete_timeout)
    except UnsupportedResourceError as e:
        report_deletion_failure(ui, descriptor.kind, descriptor.name, e)
        return Outcome(descriptor.kind, descriptor.name, False, str(e))
    return await run_with_retry(deletable.delete, policy, descriptor.kind, descriptor.name, attempt_timeout=attempt_timeout, ui=ui, sleep=sleep)


async def _delete_concurrently(client, descriptors, policy, ui, attempt_timeout, delete_timeout, sleep, report):
    """Delete independent resources in parallel and wait for every one of them.

    Each task records its Outcome as soon as it finishes, so deletions that
    completed before a cancellation are still reported.
    """

    async def _record(descriptor):
        report.add(await _delete_one(client, descriptor, policy, ui, attempt_timeout, delete_timeout, sleep))

    if descriptors:
        await asyncio.gather(*(_record(d) for d in descriptors))


async def _delete_deployment_object(client, handle, timeout, report, ui):
    if ui:
        ui.say(f"Removing the created Deployment object: '{handle.deployment_name}'")
    try:
        await asyncio.wait_for(delete_deployment(client, handle, timeout), timeout=timeout)
    except ResourceNotFoundError:
        report.add(Outcome(DEPLOYMENT, handle.deployment_name, True))
    except Exception as e:
        message = str(e) or f"timed out after {timeout}s"
        if ui:
            ui.say(f"Could not remove deployment object '{handle.deployment_name}': {message}")
        report.add(Outcome(DEPLOYMENT, handle.deployment_name, False, message))
    else:
        report.add(Outcome(DEPLOYMENT, handle.deployment_name, True))


def _unhandled(planned, report):
    """(kind, name) pairs from *planned* with no Outcome and no kept disk in *report*."""
    handled = {(o.kind, o.name) for o in report.outcomes}
    handled.update((ref.delete_kind, ref.identifier) for ref in report.kept_disks)
    return [item for item in planned if item not in handled]


async def _run_bounded(coro, timeout, handle, report, ui, planned=()):
    """Await *coro*, cancelling it after *timeout* seconds.

    On timeout every resource in *planned* that has not been handled yet gets
    a failed Outcome, followed by one summary Outcome for the cleanup run.
    """
    try:
        if timeout:
            await asyncio.wait_for(coro, timeout=timeout)
        else:
            await coro
    except TimeoutError:
        message = f"cleanup did not finish within {timeout}s; remaining deletions were cancelled"
        if ui:
            ui.error(f"Cleanup of deployment '{handle.deployment_name}' timed out. Please delete the remaining resources manually.")
        for kind, name in _unhandled(planned, report):
            report_deletion_failure(ui, kind, name, CANCELLED)
            report.add(Outcome(kind, name, False, CANCELLED))
        report.add(Outcome("cleanup", handle.deployment_name, False, message))


async def teardown(
    client,
    handle: DeploymentHandle,
    inventory,
    disks=(),
    policy: RetryPolicy | None = None,
    blob_client=None,
    foreign_names=(),
    ui=None,
    attempt_timeout=None,
    delete_timeout=DEFAULT_DELETE_TIMEOUT,
    timeout=None,
    deployment_timeout=DEFAULT_POLLING_DURATION,
    sleep=None,
) -> CleanupReport:
    """Delete everything *handle*'s deployment created, then the deployment object.

    Args:
        client: ArmClient (or any object with the same delete methods).
        inventory: ResourceDescriptors from list_created_resources().
        disks: DiskReferences read from the VM before it was deleted.
        policy: retry policy applied to every resource deletion.
        blob_client: BlobClient for unmanaged VHD disks.
        foreign_names: names of pre-existing resources that must not be deleted.
        ui: sink with say()/error() for operator-facing progress.
        attempt_timeout: seconds allowed for a single deletion attempt.
        delete_timeout: seconds a single long-running delete may poll.
        timeout: overall budget for the resource and disk deletions.
        deployment_timeout: budget for deleting the deployment object.

    Returns:
        CleanupReport with one Outcome per resource, disk and the deployment.
    """
    policy = policy or RetryPolicy()
    report = CleanupReport()
    vms, nics, rest = partition_inventory(inventory, foreign_names)

    async def _resources():
        # The NIC stays attached until the VM is gone, so these two are strictly ordered.
        for descriptor in vms + nics:
            report.add(await _delete_one(client, descriptor, policy, ui, attempt_timeout, delete_timeout, sleep))
        await _delete_concurrently(client, rest, policy, ui, attempt_timeout, delete_timeout, sleep, report)
        await dispose_disks(client, blob_client, disks, policy, ui, attempt_timeout, delete_timeout, sleep, report=report)

    planned = [(d.kind, d.name) for d in vms + nics + rest]
    planned += [(ref.delete_kind, ref.identifier) for ref in disks if not ref.keep_disk]
    try:
        await _run_bounded(_resources(), timeout, handle, report, ui, planned)
    finally:
        await _delete_deployment_object(client, handle, deployment_timeout, report, ui)
    return report


async def teardown_key_vault(
    client,
    handle: DeploymentHandle,
    inventory,
    policy: RetryPolicy | None = None,
    ui=None,
    attempt_timeout=None,
    delete_timeout=DEFAULT_DELETE_TIMEOUT,
    timeout=None,
    deployment_timeout=DEFAULT_POLLING_DURATION,
    sleep=None,
) -> CleanupReport:
    """Cleanup for a key-vault-only deployment: delete the vault, then the deployment object."""
    policy = policy or RetryPolicy()
    report = CleanupReport()
    vaults = [d for d in inventory if d.kind == KEY_VAULT]

    async def _vaults():
        for descriptor in vaults:
            report.add(await _delete_one(client, descriptor, policy, ui, attempt_timeout, delete_timeout, sleep))

    try:
        await _run_bounded(_vaults(), timeout, handle, report, ui, [(d.kind, d.name) for d in vaults])
    finally:
        await _delete_deployment_object(client, handle, deployment_timeout, report, ui)
    return report
