"""Deployment submission: PUT an ARM template and poll it to a terminal state."""

import asyncio
import json
import logging

from imagedock.provisioning.errors import DeploymentFailedError
from imagedock.provisioning.types import DeploymentHandle

logger = logging.getLogger(__name__)

DEFAULT_POLLING_DURATION = 900

_SUCCEEDED = "Succeeded"
_FAILED_STATES = {"Failed", "Canceled"}


def _describe_error(error):
    """Flatten ARM's nested error/details structure into one readable string."""
    if not error:
        return ""
    lines = [f"{error.get('code', 'Error')}: {error.get('message', '')}".strip()]
    for detail in error.get("details") or []:
        lines.append(f"  - {_describe_error(detail)}")
    return "\n".join(lines)


async def deploy(client, handle: DeploymentHandle, template, parameters=None, timeout=DEFAULT_POLLING_DURATION, interval=10):
    """Submit *template* under *handle* and wait for it to finish.

    Steps:
        1. PUT the deployment (incremental mode)
        2. Poll properties.provisioningState until Succeeded/Failed/Canceled

    Raises:
        ArmError: the submission itself was rejected.
        DeploymentFailedError: the deployment failed, was canceled, or did
            not finish within *timeout* seconds. The provider's error body is
            attached.
    """
    logger.info(f"Submitting deployment '{handle.deployment_name}' to resource group '{handle.resource_group}'...")
    await client.create_or_update_deployment(handle, template, parameters)

    if client.dry_run:
        logger.info(f"[dry-run] Poll every {interval}s (up to {timeout}s) for provisioningState '{_SUCCEEDED}'")
        return

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    state = None
    while True:
        deployment = await client.get_deployment(handle)
        properties = deployment.get("properties", {})
        state = properties.get("provisioningState")
        if state == _SUCCEEDED:
            logger.info(f"Deployment '{handle.deployment_name}' succeeded.")
            return
        if state in _FAILED_STATES:
            error = properties.get("error")
            detail = _describe_error(error) or json.dumps(properties, indent=2)
            raise DeploymentFailedError(
                f"Deployment '{handle.deployment_name}' finished with state '{state}':\n{detail}",
                code=(error or {}).get("code"),
                body=deployment,
            )
        if loop.time() >= deadline:
            break
        await asyncio.sleep(interval)

    raise DeploymentFailedError(f"Timeout after {timeout}s waiting for deployment '{handle.deployment_name}' (last state: '{state}')")


async def delete_deployment(client, handle: DeploymentHandle, timeout=DEFAULT_POLLING_DURATION):
    """Remove the deployment object itself."""
    await client.delete_deployment(handle, timeout)
