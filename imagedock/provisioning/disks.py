"""Disk disposition: delete, keep, or skip the build VM's OS and data disks.

The disk details must be read from the VM's storage profile *before* the VM
is deleted; afterwards the VM lookup returns 404 and the disk names are lost.
"""

import logging
from urllib.parse import urlparse

from imagedock.provisioning.deletables import API_VERSIONS, DEFAULT_DELETE_TIMEOUT, ArmResource, VhdBlob
from imagedock.provisioning.errors import DiskLookupError
from imagedock.provisioning.retry import RetryPolicy, report_deletion_failure, run_with_retry
from imagedock.provisioning.types import MANAGED_DISK, CleanupReport, DiskKind, DiskReference, Outcome

logger = logging.getLogger(__name__)


# ── Identifier parsing ────────────────────────────────────────────


def parse_managed_disk_id(identifier, default_subscription, default_group):
    """Split a managed disk resource ID into (subscription, resource_group, disk_name).

    Segments missing from *identifier* fall back to the given defaults, so a
    bare disk name is accepted too.
    """
    segments = [s for s in identifier.split("/") if s]
    if not segments:
        raise ValueError(f"Unable to parse managed disk identifier '{identifier}'")
    subscription, group = default_subscription, default_group
    lowered = [s.lower() for s in segments]
    if "subscriptions" in lowered:
        idx = lowered.index("subscriptions")
        if idx + 1 < len(segments):
            subscription = segments[idx + 1]
    if "resourcegroups" in lowered:
        idx = lowered.index("resourcegroups")
        if idx + 1 < len(segments):
            group = segments[idx + 1]
    return subscription, group, segments[-1]


def parse_blob_url(url):
    """Split a VHD URI into (account_url, container, blob_name).

    Raises:
        ValueError: the URI is not an absolute URL or has no container/blob path.
    """
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Unable to parse path of image {url}")
    segments = parsed.path.lstrip("/").split("/")
    if len(segments) < 2 or not segments[0] or not segments[-1]:
        raise ValueError(f"Unable to parse path of image {url}")
    return f"{parsed.scheme}://{parsed.netloc}", segments[0], "/".join(segments[1:])


# ── Storage profile ───────────────────────────────────────────────


def _reference_for(disk, subscription_id, resource_group, flags, lun=None):
    vhd_uri = (disk.get("vhd") or {}).get("uri")
    if vhd_uri:
        try:
            _, container, _ = parse_blob_url(vhd_uri)
        except ValueError:
            container = ""
        return DiskReference(DiskKind.BLOB, vhd_uri, subscription_id, container, lun=lun, **flags)
    disk_id = (disk.get("managedDisk") or {}).get("id")
    if disk_id:
        _, group, _ = parse_managed_disk_id(disk_id, subscription_id, resource_group)
        return DiskReference(DiskKind.MANAGED, disk_id, subscription_id, group, lun=lun, **flags)
    return None


def disk_references_from_vm(vm, subscription_id, resource_group, is_managed_build=False, is_catalog_sourced_build=False, keep_disk=False):
    """Derive the OS disk and data disk references from a VM resource.

    Returns:
        List of DiskReference, OS disk first.

    Raises:
        DiskLookupError: the VM has no usable OS disk reference.
    """
    flags = {
        "is_managed_build": is_managed_build,
        "is_catalog_sourced_build": is_catalog_sourced_build,
        "keep_disk": keep_disk,
    }
    profile = ((vm or {}).get("properties") or {}).get("storageProfile") or {}
    os_ref = _reference_for(profile.get("osDisk") or {}, subscription_id, resource_group, flags)
    if os_ref is None:
        name = (vm or {}).get("name", "<unknown>")
        raise DiskLookupError(f"unable to obtain an OS disk for '{name}', please check that the instance has been created")

    refs = [os_ref]
    for i, data_disk in enumerate(profile.get("dataDisks") or []):
        ref = _reference_for(data_disk, subscription_id, resource_group, flags, lun=data_disk.get("lun", i))
        if ref is not None:
            refs.append(ref)
    return refs


# ── Disposition ───────────────────────────────────────────────────


def _deletable_for(client, blob_client, ref: DiskReference, timeout):
    if ref.uses_managed_delete:
        subscription, group, disk_name = parse_managed_disk_id(ref.identifier, ref.subscription_id, ref.container_or_group)
        resource_id = f"/subscriptions/{subscription}/resourceGroups/{group}/providers/{MANAGED_DISK}/{disk_name}"
        return ArmResource(client, MANAGED_DISK, disk_name, resource_id, API_VERSIONS[MANAGED_DISK], timeout)
    if blob_client is None:
        raise ValueError(f"No blob client configured to delete VHD {ref.identifier}")
    parse_blob_url(ref.identifier)
    return VhdBlob(blob_client, ref.identifier)


async def dispose_disk(
    client,
    blob_client,
    ref: DiskReference,
    policy: RetryPolicy,
    ui=None,
    attempt_timeout=None,
    timeout=DEFAULT_DELETE_TIMEOUT,
    sleep=None,
) -> Outcome | None:
    """Dispose of one disk according to its reference.

    Returns:
        The deletion Outcome, or None when the disk is kept (no call is made).
    """
    kind = ref.delete_kind
    if ref.keep_disk:
        if ui:
            ui.say(f"Skipping deletion -> {kind} : '{ref.identifier}' since 'keep_os_disk' is set to true")
        return None

    try:
        deletable = _deletable_for(client, blob_client, ref, timeout)
    except ValueError as e:
        report_deletion_failure(ui, kind, ref.identifier, e)
        return Outcome(kind, ref.identifier, False, str(e))

    return await run_with_retry(deletable.delete, policy, kind, ref.identifier, attempt_timeout=attempt_timeout, ui=ui, sleep=sleep)


async def dispose_disks(
    client,
    blob_client,
    refs,
    policy: RetryPolicy,
    ui=None,
    attempt_timeout=None,
    timeout=DEFAULT_DELETE_TIMEOUT,
    sleep=None,
    report: CleanupReport | None = None,
) -> CleanupReport:
    """Dispose of the OS disk, then each data disk independently.

    Each disk is recorded in *report* as soon as it is handled: its Outcome,
    or the reference itself in ``kept_disks`` when it is left in place.
    """
    report = report if report is not None else CleanupReport()
    for ref in refs:
        outcome = await dispose_disk(client, blob_client, ref, policy, ui, attempt_timeout, timeout, sleep)
        if outcome is None:
            report.kept_disks.append(ref)
        else:
            report.add(outcome)
    return report
