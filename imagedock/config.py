"""Build configuration: YAML loading into a typed BuildConfig."""

import json
import os
import uuid
from dataclasses import asdict, dataclass, field

import yaml

from imagedock.provisioning.arm import DEFAULT_API_URL
from imagedock.provisioning.retry import RetryPolicy

VIRTUAL_MACHINE_TEMPLATE = "virtual_machine"
KEY_VAULT_TEMPLATE = "key_vault"
TEMPLATE_TYPES = (VIRTUAL_MACHINE_TEMPLATE, KEY_VAULT_TEMPLATE)

_REQUIRED_KEYS = ("subscription_id", "resource_group", "compute_name", "template")


@dataclass
class Timeouts:
    """Time budgets in seconds."""

    polling_duration: float = 900  # deployment submit/poll and deployment-object delete
    delete: float = 300  # one delete attempt, including its long-running poll
    cleanup: float = 600  # all resource and disk deletions together


@dataclass
class BuildConfig:
    """Everything one build needs to deploy and later clean up its resources."""

    subscription_id: str
    resource_group: str
    compute_name: str
    template: str
    deployment_name: str = ""
    parameters: dict = field(default_factory=dict)
    managed_image: bool = False
    shared_image_gallery: bool = False
    keep_os_disk: bool = False
    storage_account: str = ""
    network_security_group_name: str = ""
    template_type: str = VIRTUAL_MACHINE_TEMPLATE
    timeouts: Timeouts = field(default_factory=Timeouts)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    api_url: str = DEFAULT_API_URL

    def __post_init__(self):
        if not self.deployment_name:
            self.deployment_name = f"imagedock-deploy-{uuid.uuid4().hex[:10]}"
        if self.template_type not in TEMPLATE_TYPES:
            raise ValueError(f"Unknown template_type '{self.template_type}'. Expected one of: {', '.join(TEMPLATE_TYPES)}")

    @property
    def foreign_resource_names(self) -> tuple[str, ...]:
        """Names of pre-existing resources the template references but does not own."""
        return tuple(n for n in (self.network_security_group_name,) if n)


def build_config_from_dict(d, base_dir="."):
    """Create a BuildConfig from a parsed YAML mapping.

    Relative template paths are resolved against *base_dir*.
    """
    if not isinstance(d, dict):
        raise ValueError("Build config must be a YAML mapping")
    missing = [key for key in _REQUIRED_KEYS if not d.get(key)]
    if missing:
        raise ValueError(f"Build config is missing required field(s): {', '.join(missing)}")

    template = d["template"]
    if not os.path.isabs(template):
        template = os.path.join(base_dir, template)

    timeouts = Timeouts(**(d.get("timeouts") or {}))
    return BuildConfig(
        subscription_id=str(d["subscription_id"]),
        resource_group=d["resource_group"],
        compute_name=d["compute_name"],
        template=template,
        deployment_name=d.get("deployment_name", ""),
        parameters=d.get("parameters") or {},
        managed_image=bool(d.get("managed_image", False)),
        shared_image_gallery=bool(d.get("shared_image_gallery", False)),
        keep_os_disk=bool(d.get("keep_os_disk", False)),
        storage_account=d.get("storage_account", ""),
        network_security_group_name=d.get("network_security_group_name", ""),
        template_type=d.get("template_type", VIRTUAL_MACHINE_TEMPLATE),
        timeouts=timeouts,
        retry=RetryPolicy.from_dict(d.get("retry")),
        api_url=d.get("api_url", DEFAULT_API_URL),
    )


def load_build_config(path):
    """Load and validate a build config YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return build_config_from_dict(data, base_dir=os.path.dirname(os.path.abspath(path)))


def load_template(path):
    """Read an ARM template JSON document."""
    with open(path) as f:
        return json.load(f)


def build_config_to_dict(config: BuildConfig) -> dict:
    """Serialize a BuildConfig into the mapping accepted by build_config_from_dict()."""
    return asdict(config)
