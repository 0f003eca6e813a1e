"""Bearer token acquisition for ARM and Blob Storage requests.

Tokens come from environment variables when set, otherwise from the Azure
CLI (``az account get-access-token``), the same way gcloud is shelled out to
for other providers.
"""

import logging
import os

from imagedock.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

MANAGEMENT_RESOURCE = "https://management.azure.com/"
STORAGE_RESOURCE = "https://storage.azure.com/"

_ENV_VARS = {
    MANAGEMENT_RESOURCE: "AZURE_ACCESS_TOKEN",
    STORAGE_RESOURCE: "AZURE_STORAGE_ACCESS_TOKEN",
}


def _az_token_cmd(resource):
    """Build az command that prints an access token for *resource*."""
    return [
        "az",
        "account",
        "get-access-token",
        "--resource",
        resource,
        "--query",
        "accessToken",
        "--output",
        "tsv",
    ]


def make_token_provider(dry_run=False):
    """Return an async callable(resource) -> bearer token.

    Tokens are cached per resource for the lifetime of the provider, which is
    one CLI invocation.
    """
    cache = {}

    async def token_provider(resource=MANAGEMENT_RESOURCE):
        if resource in cache:
            return cache[resource]
        env_var = _ENV_VARS.get(resource)
        token = os.environ.get(env_var, "") if env_var else ""
        if not token:
            if dry_run:
                return "dry-run-token"
            rc, stdout, stderr = await run_shell_cmd(_az_token_cmd(resource))
            if rc != 0:
                raise RuntimeError(f"Could not acquire an access token for {resource}: {stderr.strip()}")
            token = stdout.strip()
        cache[resource] = token
        return token

    return token_provider
