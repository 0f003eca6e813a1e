"""Shared pytest fixtures for all test modules."""

import asyncio
import os
import subprocess
import sys

import pytest

from imagedock.provisioning.errors import LeaseNotPresentError, ResourceNotFoundError
from imagedock.provisioning.types import DeploymentHandle

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))

SUBSCRIPTION = "00000000-0000-0000-0000-000000000000"
RESOURCE_GROUP = "build-rg"


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the imagedock CLI as a subprocess."""

    def _run(*args, env=None):
        result = subprocess.run(
            [sys.executable, "-m", "imagedock.imagedock", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env={**os.environ, **(env or {})},
        )
        return result.returncode, result.stdout, result.stderr

    return _run


# ── Fakes ───────────────────────────────────────────────────────────


class FakeArmClient:
    """In-memory ARM gateway that records every call in order.

    Args:
        operations: deployment operations returned by list_deployment_operations,
            or an exception instance to raise.
        vm: VM resource returned by get_virtual_machine, or an exception to raise.
        failures: resource name -> list of exceptions raised by successive
            delete attempts; once the list is empty deletes succeed.
        hooks: resource name -> async callable awaited at the start of each
            delete attempt (used to make one delete slow).
        deployment_states: provisioningState values returned by successive
            get_deployment calls.
    """

    def __init__(self, operations=None, vm=None, failures=None, hooks=None, deployment_states=None, deployment_error=None):
        self.dry_run = False
        self.operations = operations if operations is not None else []
        self.vm = vm
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.hooks = hooks or {}
        self.deployment_states = list(deployment_states or ["Succeeded"])
        self.deployment_error = deployment_error
        self.calls = []
        self.attempts = {}
        self.submitted = None

    async def create_or_update_deployment(self, handle, template, parameters=None):
        self.calls.append(("put_deployment", handle.deployment_name))
        self.submitted = (handle, template, parameters)
        return {}

    async def get_deployment(self, handle):
        state = self.deployment_states.pop(0) if len(self.deployment_states) > 1 else self.deployment_states[0]
        properties = {"provisioningState": state}
        if self.deployment_error:
            properties["error"] = self.deployment_error
        return {"name": handle.deployment_name, "properties": properties}

    async def delete_deployment(self, handle, timeout):
        self.calls.append(("delete_deployment", handle.deployment_name))

    async def list_deployment_operations(self, handle, top=50):
        self.calls.append(("list_operations", handle.deployment_name))
        if isinstance(self.operations, Exception):
            raise self.operations
        return self.operations

    async def get_virtual_machine(self, subscription_id, resource_group, name):
        self.calls.append(("get_vm", name))
        if isinstance(self.vm, Exception):
            raise self.vm
        if self.vm is None:
            raise ResourceNotFoundError("not found", status_code=404)
        return self.vm

    async def delete_resource(self, resource_id, api_version, timeout):
        name = resource_id.rsplit("/", 1)[-1]
        self.attempts[name] = self.attempts.get(name, 0) + 1
        self.calls.append(("delete_start", name))
        if name in self.hooks:
            await self.hooks[name]()
        pending = self.failures.get(name)
        if pending:
            raise pending.pop(0)
        self.calls.append(("delete_done", name))

    def deleted(self):
        """Names whose delete completed, in completion order."""
        return [name for action, name in self.calls if action == "delete_done"]

    def started(self):
        """Names whose delete was attempted, in order of first attempt."""
        seen = []
        for action, name in self.calls:
            if action == "delete_start" and name not in seen:
                seen.append(name)
        return seen


class FakeBlobClient:
    """In-memory blob gateway recording lease breaks and deletes."""

    def __init__(self, lease_error=None, delete_failures=None):
        self.lease_error = lease_error if lease_error is not None else LeaseNotPresentError("no lease", status_code=409)
        self.delete_failures = list(delete_failures or [])
        self.calls = []

    async def break_lease(self, url):
        self.calls.append(("break_lease", url))
        if self.lease_error:
            raise self.lease_error

    async def delete_blob(self, url):
        self.calls.append(("delete_blob", url))
        if self.delete_failures:
            raise self.delete_failures.pop(0)


class RecordingUi:
    """UI sink that keeps every message."""

    def __init__(self):
        self.messages = []
        self.errors = []

    def say(self, message):
        self.messages.append(message)

    def error(self, message):
        self.errors.append(message)

    @property
    def text(self):
        return "\n".join(self.messages + self.errors)


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def make_client():
    """Factory for FakeArmClient."""
    return FakeArmClient


@pytest.fixture
def make_blob_client():
    """Factory for FakeBlobClient."""
    return FakeBlobClient


@pytest.fixture
def ui():
    return RecordingUi()


@pytest.fixture
def handle():
    return DeploymentHandle(SUBSCRIPTION, RESOURCE_GROUP, "pkrdp-test")


@pytest.fixture
def delays():
    """Recorded backoff delays; use ``delays.sleep`` as the retry sleep."""

    class _Delays(list):
        async def sleep(self, seconds):
            self.append(seconds)
            await asyncio.sleep(0)

    return _Delays()


@pytest.fixture
def operation():
    """Build a deployment operation dict targeting (kind, name)."""

    def _make(kind, name):
        return {
            "operationId": f"op-{name}",
            "properties": {
                "provisioningState": "Succeeded",
                "targetResource": {
                    "id": f"/subscriptions/{SUBSCRIPTION}/resourceGroups/{RESOURCE_GROUP}/providers/{kind}/{name}",
                    "resourceType": kind,
                    "resourceName": name,
                },
            },
        }

    return _make


@pytest.fixture
def managed_vm():
    """VM resource with a managed OS disk and one managed data disk."""
    base = f"/subscriptions/{SUBSCRIPTION}/resourceGroups/{RESOURCE_GROUP}/providers/Microsoft.Compute/disks"
    return {
        "name": "pkrvm-test",
        "properties": {
            "storageProfile": {
                "osDisk": {"name": "pkros-test", "managedDisk": {"id": f"{base}/pkros-test"}},
                "dataDisks": [{"lun": 0, "managedDisk": {"id": f"{base}/pkrdd-test-0"}}],
            }
        },
    }


@pytest.fixture
def vhd_vm():
    """VM resource backed by an unmanaged VHD OS disk."""
    return {
        "name": "pkrvm-test",
        "properties": {
            "storageProfile": {
                "osDisk": {"name": "pkros-test", "vhd": {"uri": "https://buildsa.blob.core.windows.net/images/pkros-test.vhd"}},
                "dataDisks": [],
            }
        },
    }
