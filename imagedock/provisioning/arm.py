"""Azure Resource Manager gateway: deployments, VMs and generic resource deletes via the ARM REST API."""

import asyncio
import json
import logging

import httpx

from imagedock.provisioning.credentials import MANAGEMENT_RESOURCE
from imagedock.provisioning.errors import ArmError, ResourceNotFoundError
from imagedock.provisioning.types import VIRTUAL_MACHINE, DeploymentHandle

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://management.azure.com"
DEPLOYMENTS_API_VERSION = "2022-09-01"
COMPUTE_API_VERSION = "2022-03-01"
DEFAULT_POLLING_INTERVAL = 5

_ASYNC_OPERATION_DONE = "Succeeded"
_ASYNC_OPERATION_FAILED = {"Failed", "Canceled"}


# ── Response helpers ──────────────────────────────────────────────


def _response_body(resp):
    try:
        return resp.json()
    except ValueError:
        return resp.text


def error_from_response(resp) -> ArmError:
    """Build an ArmError from an ARM error response.

    ARM wraps errors as ``{"error": {"code": ..., "message": ...}}``; some
    endpoints return the inner object directly.
    """
    body = _response_body(resp)
    code = None
    message = resp.text or resp.reason_phrase
    if isinstance(body, dict):
        err = body.get("error", body)
        if isinstance(err, dict):
            code = err.get("code")
            message = err.get("message", message)
    cls = ResourceNotFoundError if resp.status_code == 404 else ArmError
    return cls(message, status_code=resp.status_code, code=code, body=body)


def _retry_after(resp, default):
    value = resp.headers.get("Retry-After")
    if value is None:
        return default
    try:
        return min(float(value), 60)
    except ValueError:
        return default


def _wrap_parameters(parameters):
    """Wrap plain parameter values into ARM's ``{"name": {"value": v}}`` shape."""
    wrapped = {}
    for key, value in (parameters or {}).items():
        if isinstance(value, dict) and ("value" in value or "reference" in value):
            wrapped[key] = value
        else:
            wrapped[key] = {"value": value}
    return wrapped


# ── Client ────────────────────────────────────────────────────────


class ArmClient:
    """Typed ARM operations with a poll-to-completion contract for long-running calls.

    Every failure is raised as an ArmError carrying the provider's error
    body; nothing is stashed on the client between calls.

    Args:
        token_provider: async callable(resource) -> bearer token.
        api_url: ARM endpoint (override for sovereign clouds).
        polling_interval: default seconds between long-running operation polls.
        dry_run: log requests instead of sending them.
        transport: optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(self, token_provider, api_url=DEFAULT_API_URL, polling_interval=DEFAULT_POLLING_INTERVAL, dry_run=False, transport=None):
        self.token_provider = token_provider
        self.api_url = api_url.rstrip("/")
        self.polling_interval = polling_interval
        self.dry_run = dry_run
        self.transport = transport

    def _url(self, path):
        return path if path.startswith("http") else f"{self.api_url}{path}"

    async def _request(self, method, path, api_version=None, body=None, params=None):
        """Make an authenticated ARM request.

        Returns:
            The httpx.Response for 2xx/3xx statuses, or ``None`` in dry-run mode.
        """
        url = self._url(path)
        query = dict(params or {})
        if api_version:
            query["api-version"] = api_version

        if self.dry_run:
            logger.info(f"[dry-run] {method} {url}")
            if body is not None:
                logger.info(f"[dry-run] payload: {json.dumps(body, indent=2)}")
            return None

        token = await self.token_provider(MANAGEMENT_RESOURCE)
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        async with httpx.AsyncClient(transport=self.transport) as client:
            resp = await client.request(method, url, params=query or None, json=body, headers=headers, timeout=60)
        if resp.status_code >= 400:
            raise error_from_response(resp)
        return resp

    async def _wait_for_completion(self, resp, timeout, description):
        """Poll a long-running operation started by *resp* until it finishes.

        ``200``/``204`` responses are already complete. ``201``/``202`` are
        followed through the ``Azure-AsyncOperation`` header (body status) or
        the ``Location`` header (HTTP status; 202 means still running).

        Raises:
            ArmError: the operation reported Failed or Canceled.
            TimeoutError: the operation did not finish within *timeout* seconds.
        """
        if resp is None or resp.status_code in (200, 204):
            return
        async_url = resp.headers.get("Azure-AsyncOperation")
        location = resp.headers.get("Location")
        if not async_url and not location:
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        interval = _retry_after(resp, self.polling_interval)
        while loop.time() < deadline:
            await asyncio.sleep(interval)
            if async_url:
                poll = await self._request("GET", async_url)
                result = _response_body(poll)
                status = result.get("status") if isinstance(result, dict) else None
                if status == _ASYNC_OPERATION_DONE:
                    return
                if status in _ASYNC_OPERATION_FAILED:
                    err = result.get("error") or {}
                    raise ArmError(
                        err.get("message", f"{description} ended with status '{status}'"),
                        status_code=poll.status_code,
                        code=err.get("code"),
                        body=result,
                    )
            else:
                poll = await self._request("GET", location)
                if poll.status_code != 202:
                    return
            interval = _retry_after(poll, self.polling_interval)

        raise TimeoutError(f"Timeout after {timeout}s waiting for {description}")

    # ── Deployments ───────────────────────────────────────────────

    async def create_or_update_deployment(self, handle: DeploymentHandle, template, parameters=None):
        """Submit *template* as an incremental deployment under *handle*.

        PUT .../providers/Microsoft.Resources/deployments/{name}
        """
        body = {
            "properties": {
                "mode": "Incremental",
                "template": template,
                "parameters": _wrap_parameters(parameters),
            }
        }
        resp = await self._request("PUT", handle.resource_id, DEPLOYMENTS_API_VERSION, body)
        return None if resp is None else _response_body(resp)

    async def get_deployment(self, handle: DeploymentHandle):
        """Return the deployment resource; a placeholder in dry-run mode."""
        resp = await self._request("GET", handle.resource_id, DEPLOYMENTS_API_VERSION)
        if resp is None:
            return {"name": handle.deployment_name, "properties": {"provisioningState": "Succeeded"}}
        return _response_body(resp)

    async def delete_deployment(self, handle: DeploymentHandle, timeout):
        """Delete the deployment object (not the resources it created)."""
        resp = await self._request("DELETE", handle.resource_id, DEPLOYMENTS_API_VERSION)
        await self._wait_for_completion(resp, timeout, f"deletion of deployment '{handle.deployment_name}'")

    async def list_deployment_operations(self, handle: DeploymentHandle, top=50):
        """Return every operation recorded for the deployment, following nextLink pages.

        GET .../deployments/{name}/operations?$top={top}
        """
        path = f"{handle.resource_id}/operations"
        resp = await self._request("GET", path, DEPLOYMENTS_API_VERSION, params={"$top": top})
        if resp is None:
            return []

        operations = []
        while True:
            page = _response_body(resp)
            operations.extend(page.get("value", []))
            next_link = page.get("nextLink")
            if not next_link:
                return operations
            resp = await self._request("GET", next_link)

    # ── Compute ───────────────────────────────────────────────────

    async def get_virtual_machine(self, subscription_id, resource_group, name):
        """Return the VM resource, including properties.storageProfile.

        In dry-run mode a placeholder VM with a managed OS disk is returned.
        """
        path = f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}/providers/{VIRTUAL_MACHINE}/{name}"
        resp = await self._request("GET", path, COMPUTE_API_VERSION)
        if resp is None:
            disk_id = f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}/providers/Microsoft.Compute/disks/{name}-osdisk"
            return {
                "name": name,
                "properties": {"storageProfile": {"osDisk": {"managedDisk": {"id": disk_id}}, "dataDisks": []}},
            }
        return _response_body(resp)

    # ── Generic delete ────────────────────────────────────────────

    async def delete_resource(self, resource_id, api_version, timeout):
        """DELETE a resource by ID and poll until the deletion completes.

        Raises:
            ResourceNotFoundError: the resource is already gone.
        """
        resp = await self._request("DELETE", resource_id, api_version)
        await self._wait_for_completion(resp, timeout, f"deletion of {resource_id}")
