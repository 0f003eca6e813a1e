"""Blob Storage gateway: break leases on and delete unmanaged VHD blobs."""

import logging

import httpx

from imagedock.provisioning.arm import error_from_response
from imagedock.provisioning.credentials import STORAGE_RESOURCE
from imagedock.provisioning.errors import LeaseNotPresentError

logger = logging.getLogger(__name__)

STORAGE_API_VERSION = "2021-08-06"
LEASE_NOT_PRESENT = "LeaseNotPresentWithLeaseOperation"


class BlobClient:
    """Blob REST operations authenticated with an Azure AD bearer token."""

    def __init__(self, token_provider, dry_run=False, transport=None):
        self.token_provider = token_provider
        self.dry_run = dry_run
        self.transport = transport

    async def _request(self, method, url, headers=None, params=None):
        if self.dry_run:
            logger.info(f"[dry-run] {method} {url}")
            return None

        token = await self.token_provider(STORAGE_RESOURCE)
        all_headers = {
            "Authorization": f"Bearer {token}",
            "x-ms-version": STORAGE_API_VERSION,
            **(headers or {}),
        }
        async with httpx.AsyncClient(transport=self.transport) as client:
            resp = await client.request(method, url, headers=all_headers, params=params, timeout=60)
        if resp.status_code >= 400:
            raise _blob_error(resp)
        return resp

    async def break_lease(self, url):
        """Break any lease on the blob immediately.

        Raises:
            LeaseNotPresentError: the blob holds no lease.
        """
        await self._request(
            "PUT",
            url,
            headers={"x-ms-lease-action": "break", "x-ms-lease-break-period": "0"},
            params={"comp": "lease"},
        )

    async def delete_blob(self, url):
        """Delete the blob together with its snapshots."""
        await self._request("DELETE", url, headers={"x-ms-delete-snapshots": "include"})


def _blob_error(resp):
    """Map a storage error response to an ArmError subclass.

    Blob Storage reports the error code in the ``x-ms-error-code`` header
    (the body is XML), so the header wins over the parsed body.
    """
    err = error_from_response(resp)
    code = resp.headers.get("x-ms-error-code") or err.code
    if code == LEASE_NOT_PRESENT:
        return LeaseNotPresentError(err.message, status_code=resp.status_code, code=code, body=err.body)
    err.code = code
    return err
