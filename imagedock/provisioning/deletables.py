"""Per-kind deletion strategies, looked up from a resource-type table."""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Protocol

from imagedock.provisioning.errors import LeaseNotPresentError, UnsupportedResourceError
from imagedock.provisioning.types import (
    KEY_VAULT,
    MANAGED_DISK,
    NETWORK_INTERFACE,
    NETWORK_SECURITY_GROUP,
    PUBLIC_IP_ADDRESS,
    VHD_BLOB,
    VIRTUAL_MACHINE,
    VIRTUAL_NETWORK,
    ResourceDescriptor,
)

logger = logging.getLogger(__name__)

DEFAULT_DELETE_TIMEOUT = 300


class Deletable(Protocol):
    kind: str
    name: str

    async def delete(self) -> None: ...


@dataclass
class ArmResource:
    """Any ARM resource deleted by ID with a kind-specific api-version."""

    client: object
    kind: str
    name: str
    resource_id: str
    api_version: str
    timeout: float = DEFAULT_DELETE_TIMEOUT

    async def delete(self):
        await self.client.delete_resource(self.resource_id, self.api_version, self.timeout)


@dataclass
class VhdBlob:
    """An unmanaged VHD blob; the build VM may still hold a lease on it."""

    blob_client: object
    url: str
    kind: str = VHD_BLOB

    @property
    def name(self):
        return self.url

    async def delete(self):
        try:
            await self.blob_client.break_lease(self.url)
        except LeaseNotPresentError:
            pass
        await self.blob_client.delete_blob(self.url)


# Resource type -> api-version used to delete it.
API_VERSIONS = {
    VIRTUAL_MACHINE: "2022-03-01",
    MANAGED_DISK: "2022-03-02",
    NETWORK_INTERFACE: "2023-09-01",
    VIRTUAL_NETWORK: "2023-09-01",
    NETWORK_SECURITY_GROUP: "2023-09-01",
    PUBLIC_IP_ADDRESS: "2023-09-01",
    KEY_VAULT: "2022-07-01",
}


def _arm_factory(api_version, client, descriptor: ResourceDescriptor, timeout=DEFAULT_DELETE_TIMEOUT):
    return ArmResource(
        client=client,
        kind=descriptor.kind,
        name=descriptor.name,
        resource_id=descriptor.resource_id,
        api_version=api_version,
        timeout=timeout,
    )


DELETABLE_FACTORIES = {kind: partial(_arm_factory, api_version) for kind, api_version in API_VERSIONS.items()}


def make_deletable(client, descriptor: ResourceDescriptor, timeout=DEFAULT_DELETE_TIMEOUT) -> Deletable:
    """Return the deletion strategy for *descriptor*'s resource type.

    Raises:
        UnsupportedResourceError: no strategy is registered for the type.
    """
    factory = DELETABLE_FACTORIES.get(descriptor.kind)
    if factory is None:
        raise UnsupportedResourceError(f"Don't know how to delete resources of type '{descriptor.kind}'")
    return factory(client, descriptor, timeout=timeout)
