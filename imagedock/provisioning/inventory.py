"""Discover which resources a deployment actually created."""

import logging

import httpx

from imagedock.provisioning.errors import ArmError, InventoryError, ResourceNotFoundError
from imagedock.provisioning.types import DeploymentHandle, ResourceDescriptor

logger = logging.getLogger(__name__)

PAGE_SIZE = 50


def descriptors_from_operations(operations, handle: DeploymentHandle):
    """Extract one ResourceDescriptor per distinct target resource.

    Operations without a target resource are skipped; ARM sometimes adds
    empty entries to the list.
    """
    seen = set()
    descriptors = []
    for op in operations:
        target = (op.get("properties") or {}).get("targetResource")
        if not target:
            continue
        kind = target.get("resourceType")
        name = target.get("resourceName")
        if not kind or not name:
            continue
        if (kind, name) in seen:
            continue
        seen.add((kind, name))
        descriptors.append(ResourceDescriptor(kind, name, handle.resource_group, handle.subscription_id))
    return descriptors


async def list_created_resources(client, handle: DeploymentHandle, page_size=PAGE_SIZE) -> list[ResourceDescriptor]:
    """List the resources created under *handle*.

    A deployment that does not exist (for example one rejected before any
    resource was created) yields an empty list.

    Raises:
        InventoryError: the operation log could not be read.
    """
    try:
        operations = await client.list_deployment_operations(handle, top=page_size)
    except ResourceNotFoundError:
        logger.info(f"Deployment '{handle.deployment_name}' not found; nothing was created.")
        return []
    except (ArmError, httpx.HTTPError, OSError) as e:
        raise InventoryError(f"Could not retrieve deployment operations for '{handle.deployment_name}': {e}") from e

    descriptors = descriptors_from_operations(operations, handle)
    logger.info(f"Deployment '{handle.deployment_name}' created {len(descriptors)} resource(s).")
    return descriptors
