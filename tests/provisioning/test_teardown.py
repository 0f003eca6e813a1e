"""Tests for the teardown coordinator: ordering, retries, fan-out and the deployment object."""

import asyncio

from imagedock.provisioning.errors import ArmError, ResourceNotFoundError
from imagedock.provisioning.retry import RetryPolicy
from imagedock.provisioning.teardown import partition_inventory, teardown, teardown_key_vault
from imagedock.provisioning.types import (
    DEPLOYMENT,
    KEY_VAULT,
    MANAGED_DISK,
    NETWORK_INTERFACE,
    NETWORK_SECURITY_GROUP,
    PUBLIC_IP_ADDRESS,
    VHD_BLOB,
    VIRTUAL_MACHINE,
    VIRTUAL_NETWORK,
    DiskKind,
    DiskReference,
    ResourceDescriptor,
)

SUBSCRIPTION = "00000000-0000-0000-0000-000000000000"
RESOURCE_GROUP = "build-rg"
DISK_ID = f"/subscriptions/{SUBSCRIPTION}/resourceGroups/{RESOURCE_GROUP}/providers/Microsoft.Compute/disks/pkros-test"


def _res(kind, name):
    return ResourceDescriptor(kind, name, RESOURCE_GROUP, SUBSCRIPTION)


def _disk(keep=False):
    return DiskReference(DiskKind.MANAGED, DISK_ID, SUBSCRIPTION, RESOURCE_GROUP, keep_disk=keep)


def _policy(attempts=3):
    return RetryPolicy(max_attempts=attempts, initial_backoff=1, max_backoff=10, multiplier=2)


# ── partition_inventory ─────────────────────────────────────────────


def test_partition_inventory_splits_by_kind():
    inventory = [
        _res(PUBLIC_IP_ADDRESS, "p1"),
        _res(NETWORK_INTERFACE, "n1"),
        _res(VIRTUAL_MACHINE, "v1"),
        _res(VIRTUAL_NETWORK, "vnet1"),
    ]
    vms, nics, rest = partition_inventory(inventory)
    assert [d.name for d in vms] == ["v1"]
    assert [d.name for d in nics] == ["n1"]
    assert [d.name for d in rest] == ["p1", "vnet1"]


def test_partition_inventory_drops_foreign_resources():
    inventory = [_res(NETWORK_SECURITY_GROUP, "byo-nsg"), _res(PUBLIC_IP_ADDRESS, "p1")]
    _, _, rest = partition_inventory(inventory, foreign_names=["byo-nsg", ""])
    assert [d.name for d in rest] == ["p1"]


def test_partition_inventory_leaves_disks_to_disk_disposition():
    inventory = [_res(MANAGED_DISK, "pkros-test"), _res(VHD_BLOB, "pkros-test.vhd"), _res(PUBLIC_IP_ADDRESS, "p1")]
    vms, nics, rest = partition_inventory(inventory)
    assert (vms, nics) == ([], [])
    assert [d.name for d in rest] == ["p1"]


# ── teardown ordering ───────────────────────────────────────────────


async def test_teardown_deletes_in_dependency_order(make_client, handle, delays):
    client = make_client()
    inventory = [_res(VIRTUAL_MACHINE, "v1"), _res(NETWORK_INTERFACE, "n1"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, disks=[_disk()], policy=_policy(), sleep=delays.sleep)

    assert client.calls == [
        ("delete_start", "v1"),
        ("delete_done", "v1"),
        ("delete_start", "n1"),
        ("delete_done", "n1"),
        ("delete_start", "p1"),
        ("delete_done", "p1"),
        ("delete_start", "pkros-test"),
        ("delete_done", "pkros-test"),
        ("delete_deployment", "pkrdp-test"),
    ]
    assert report.succeeded
    assert [o.kind for o in report.outcomes] == [VIRTUAL_MACHINE, NETWORK_INTERFACE, PUBLIC_IP_ADDRESS, MANAGED_DISK, DEPLOYMENT]
    assert delays == []


async def test_teardown_vm_listed_after_nic_still_deleted_first(make_client, handle, delays):
    client = make_client()
    inventory = [_res(NETWORK_INTERFACE, "n1"), _res(PUBLIC_IP_ADDRESS, "p1"), _res(VIRTUAL_MACHINE, "v1")]

    await teardown(client, handle, inventory, policy=_policy(), sleep=delays.sleep)

    assert client.deleted() == ["v1", "n1", "p1"]


async def test_teardown_nic_failure_does_not_stop_cleanup(make_client, handle, ui, delays):
    """The NIC never deletes: it is tried max_attempts times, everything else still goes."""
    failures = {"n1": [ArmError("NIC is in use", status_code=400, code="NicInUse")] * 10}
    client = make_client(failures=failures)
    inventory = [_res(VIRTUAL_MACHINE, "v1"), _res(NETWORK_INTERFACE, "n1"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, disks=[_disk()], policy=_policy(3), ui=ui, sleep=delays.sleep)

    assert client.attempts["n1"] == 3
    assert delays == [1, 2]
    assert client.deleted() == ["v1", "p1", "pkros-test"]
    assert client.calls[-1] == ("delete_deployment", "pkrdp-test")
    assert not report.succeeded
    assert [(o.kind, o.name) for o in report.failures] == [(NETWORK_INTERFACE, "n1")]
    assert "Please delete manually" in ui.text
    assert "n1" in ui.text


async def test_teardown_vm_failure_continues_best_effort(make_client, handle, delays):
    client = make_client(failures={"v1": [ArmError("boom", status_code=500)]})
    inventory = [_res(VIRTUAL_MACHINE, "v1"), _res(NETWORK_INTERFACE, "n1")]

    report = await teardown(client, handle, inventory, policy=_policy(1), sleep=delays.sleep)

    assert client.started() == ["v1", "n1"]
    assert [o.name for o in report.failures] == ["v1"]
    assert ("delete_deployment", "pkrdp-test") in client.calls


async def test_teardown_already_deleted_resource_counts_as_success(make_client, handle, delays):
    client = make_client(failures={"p1": [ResourceNotFoundError("gone", status_code=404)]})

    report = await teardown(client, handle, [_res(PUBLIC_IP_ADDRESS, "p1")], policy=_policy(), sleep=delays.sleep)

    assert report.succeeded
    assert client.attempts["p1"] == 1
    assert delays == []


async def test_teardown_waits_for_every_concurrent_delete(make_client, handle, delays):
    """Disk deletion starts only after the slowest independent resource is done."""

    async def slow():
        for _ in range(5):
            await asyncio.sleep(0)

    client = make_client(hooks={"vnet1": slow})
    inventory = [_res(VIRTUAL_NETWORK, "vnet1"), _res(NETWORK_SECURITY_GROUP, "nsg1"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, disks=[_disk()], policy=_policy(), sleep=delays.sleep)

    assert report.succeeded
    calls = client.calls
    slow_done = calls.index(("delete_done", "vnet1"))
    # All independent deletes were in flight before the slow one finished.
    for name in ("vnet1", "nsg1", "p1"):
        assert calls.index(("delete_start", name)) < slow_done
    assert calls.index(("delete_done", "nsg1")) < slow_done
    assert calls.index(("delete_start", "pkros-test")) > slow_done


async def test_teardown_skips_foreign_security_group(make_client, handle, delays):
    client = make_client()
    inventory = [_res(NETWORK_SECURITY_GROUP, "byo-nsg"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, policy=_policy(), foreign_names=["byo-nsg"], sleep=delays.sleep)

    assert "byo-nsg" not in client.started()
    assert client.deleted() == ["p1"]
    assert report.succeeded


async def test_teardown_unknown_kind_is_recorded(make_client, handle, ui, delays):
    client = make_client()
    inventory = [_res("Microsoft.Contoso/widgets", "w1"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, policy=_policy(), ui=ui, sleep=delays.sleep)

    assert client.deleted() == ["p1"]
    assert [o.name for o in report.failures] == ["w1"]
    assert "Microsoft.Contoso/widgets" in report.failures[0].error


async def test_teardown_keeps_disk(make_client, handle, ui, delays):
    client = make_client()
    disk = _disk(keep=True)

    report = await teardown(client, handle, [], disks=[disk], policy=_policy(), ui=ui, sleep=delays.sleep)

    assert client.calls == [("delete_deployment", "pkrdp-test")]
    assert report.kept_disks == [disk]
    assert report.succeeded
    assert "keep_os_disk" in ui.text


async def test_teardown_never_deletes_kept_disk_listed_in_inventory(make_client, handle, delays):
    client = make_client()
    disk = _disk(keep=True)
    inventory = [_res(VIRTUAL_MACHINE, "v1"), _res(MANAGED_DISK, "pkros-test"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, disks=[disk], policy=_policy(), sleep=delays.sleep)

    assert "pkros-test" not in client.started()
    assert client.deleted() == ["v1", "p1"]
    assert report.kept_disks == [disk]
    assert report.succeeded


async def test_teardown_inventory_disk_deleted_once_through_disposition(make_client, handle, delays):
    client = make_client()
    inventory = [_res(MANAGED_DISK, "pkros-test"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, disks=[_disk()], policy=_policy(), sleep=delays.sleep)

    assert client.deleted() == ["p1", "pkros-test"]
    assert [o.name for o in report.outcomes if o.kind == MANAGED_DISK] == [DISK_ID]


async def test_teardown_empty_inventory_only_removes_deployment(make_client, handle, delays):
    client = make_client()
    report = await teardown(client, handle, [], policy=_policy(), sleep=delays.sleep)
    assert client.calls == [("delete_deployment", "pkrdp-test")]
    assert [o.kind for o in report.outcomes] == [DEPLOYMENT]


# ── deployment object and timeouts ──────────────────────────────────


async def test_teardown_timeout_cancels_and_still_removes_deployment(make_client, handle, ui, delays):
    async def hang():
        await asyncio.Event().wait()

    client = make_client(hooks={"v1": hang})
    inventory = [_res(VIRTUAL_MACHINE, "v1"), _res(NETWORK_INTERFACE, "n1")]

    report = await teardown(client, handle, inventory, disks=[_disk()], policy=_policy(), ui=ui, timeout=0.05, sleep=delays.sleep)

    assert client.started() == ["v1"]
    assert client.calls[-1] == ("delete_deployment", "pkrdp-test")
    assert [(o.kind, o.name) for o in report.failures] == [
        (VIRTUAL_MACHINE, "v1"),
        (NETWORK_INTERFACE, "n1"),
        (MANAGED_DISK, DISK_ID),
        ("cleanup", "pkrdp-test"),
    ]
    assert report.failures[0].error == "cancelled: cleanup timeout"
    assert "timed out" in ui.errors[0]
    assert "n1" in ui.text


async def test_teardown_timeout_keeps_outcomes_of_finished_concurrent_deletes(make_client, handle, delays):
    async def hang():
        await asyncio.Event().wait()

    client = make_client(hooks={"vnet1": hang})
    inventory = [_res(VIRTUAL_NETWORK, "vnet1"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, policy=_policy(), timeout=0.05, sleep=delays.sleep)

    assert client.deleted() == ["p1"]
    assert [(o.name, o.succeeded) for o in report.outcomes if o.kind == PUBLIC_IP_ADDRESS] == [("p1", True)]
    assert [(o.kind, o.name) for o in report.failures] == [(VIRTUAL_NETWORK, "vnet1"), ("cleanup", "pkrdp-test")]


async def test_teardown_timeout_does_not_report_kept_disk(make_client, handle, delays):
    async def hang():
        await asyncio.Event().wait()

    client = make_client(hooks={"p1": hang})
    inventory = [_res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown(client, handle, inventory, disks=[_disk(keep=True)], policy=_policy(), timeout=0.05, sleep=delays.sleep)

    assert [o.name for o in report.failures] == ["p1", "pkrdp-test"]


async def test_teardown_records_deployment_delete_failure(make_client, handle, ui, delays):
    client = make_client()

    async def refuse(handle, timeout):
        raise ArmError("deployment is locked", status_code=409, code="ScopeLocked")

    client.delete_deployment = refuse

    report = await teardown(client, handle, [_res(PUBLIC_IP_ADDRESS, "p1")], policy=_policy(), ui=ui, sleep=delays.sleep)

    assert client.deleted() == ["p1"]
    assert [(o.kind, o.name) for o in report.failures] == [(DEPLOYMENT, "pkrdp-test")]
    assert "ScopeLocked" in report.failures[0].error


async def test_teardown_missing_deployment_object_is_success(make_client, handle, delays):
    client = make_client()

    async def gone(handle, timeout):
        raise ResourceNotFoundError("not found", status_code=404)

    client.delete_deployment = gone

    report = await teardown(client, handle, [], policy=_policy(), sleep=delays.sleep)

    assert report.succeeded


# ── key vault variant ───────────────────────────────────────────────


async def test_teardown_key_vault_deletes_only_vaults(make_client, handle, delays):
    client = make_client()
    inventory = [_res(KEY_VAULT, "kv1"), _res(PUBLIC_IP_ADDRESS, "p1")]

    report = await teardown_key_vault(client, handle, inventory, policy=_policy(), sleep=delays.sleep)

    assert client.calls == [
        ("delete_start", "kv1"),
        ("delete_done", "kv1"),
        ("delete_deployment", "pkrdp-test"),
    ]
    assert report.succeeded


async def test_teardown_key_vault_timeout_names_the_vault(make_client, handle, ui, delays):
    async def hang():
        await asyncio.Event().wait()

    client = make_client(hooks={"kv1": hang})

    report = await teardown_key_vault(client, handle, [_res(KEY_VAULT, "kv1")], policy=_policy(), ui=ui, timeout=0.05, sleep=delays.sleep)

    assert [(o.kind, o.name) for o in report.failures] == [(KEY_VAULT, "kv1"), ("cleanup", "pkrdp-test")]
    assert client.calls[-1] == ("delete_deployment", "pkrdp-test")
