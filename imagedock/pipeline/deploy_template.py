"""Pipeline step that deploys the build template and tears its resources down."""

import logging

from imagedock.config import KEY_VAULT_TEMPLATE
from imagedock.pipeline.context import BuildContext, StepAction
from imagedock.provisioning.deployment import deploy
from imagedock.provisioning.disks import disk_references_from_vm
from imagedock.provisioning.errors import InventoryError, ResourceNotFoundError
from imagedock.provisioning.inventory import list_created_resources
from imagedock.provisioning.teardown import teardown, teardown_key_vault
from imagedock.provisioning.types import MANAGED_DISK, CleanupReport, DeploymentHandle, Outcome

logger = logging.getLogger(__name__)


class StepDeployTemplate:
    """Run: submit the template and wait for it. Cleanup: remove what it created.

    Cleanup never raises; every problem is reported through the context's UI
    and recorded in ``ctx.cleanup_report``.
    """

    def __init__(self, client, config, template_factory, blob_client=None, template_type=None, polling_interval=10, sleep=None):
        self.client = client
        self.blob_client = blob_client
        self.config = config
        self.deployment_name = config.deployment_name
        self.template_factory = template_factory
        self.template_type = template_type or config.template_type
        self.polling_interval = polling_interval
        self.sleep = sleep

    def handle(self, ctx: BuildContext) -> DeploymentHandle:
        return DeploymentHandle(ctx.subscription_id, ctx.resource_group, self.deployment_name)

    async def run(self, ctx: BuildContext) -> StepAction:
        ctx.ui.say("Deploying deployment template ...")
        ctx.ui.say(f" -> ResourceGroupName : '{ctx.resource_group}'")
        ctx.ui.say(f" -> DeploymentName    : '{self.deployment_name}'")
        try:
            template = self.template_factory(self.config)
            await deploy(
                self.client,
                self.handle(ctx),
                template,
                self.config.parameters,
                timeout=self.config.timeouts.polling_duration,
                interval=self.polling_interval,
            )
        except Exception as e:
            ctx.error = e
            ctx.ui.error(str(e))
            return StepAction.HALT
        return StepAction.CONTINUE

    async def cleanup(self, ctx: BuildContext):
        try:
            if self.template_type == KEY_VAULT_TEMPLATE:
                report = await self._cleanup_key_vault(ctx)
            else:
                report = await self._cleanup_virtual_machine(ctx)
        except Exception as e:
            ctx.ui.error(f"Cleanup of deployment '{self.deployment_name}' failed: {e}")
            report = CleanupReport([Outcome("cleanup", self.deployment_name, False, str(e))])

        ctx.cleanup_report = report
        ctx.artifact_disks.extend(report.kept_disks)
        report.log_summary(logger)

    def _teardown_kwargs(self):
        timeouts = self.config.timeouts
        return {
            "policy": self.config.retry,
            "attempt_timeout": timeouts.delete,
            "delete_timeout": timeouts.delete,
            "timeout": timeouts.cleanup,
            "deployment_timeout": timeouts.polling_duration,
            "sleep": self.sleep,
        }

    async def _cleanup_key_vault(self, ctx):
        ctx.ui.say("\nDeleting KeyVault created during build")
        handle = self.handle(ctx)
        try:
            inventory = await list_created_resources(self.client, handle)
        except InventoryError as e:
            ctx.ui.error(f"{e}\n to get the KeyVault, please manually delete it")
            inventory = []
        return await teardown_key_vault(self.client, handle, inventory, ui=ctx.ui, **self._teardown_kwargs())

    async def _read_disks(self, ctx):
        """Read the VM's disks before it is deleted.

        Returns:
            (disk_references, failure_outcome_or_None)
        """
        if ctx.disk_disposed_upstream:
            ctx.ui.say("OS disk was already handled by the capture step; skipping disk disposal")
            return [], None
        try:
            vm = await self.client.get_virtual_machine(ctx.subscription_id, ctx.resource_group, ctx.compute_name)
            disks = disk_references_from_vm(
                vm,
                ctx.subscription_id,
                ctx.resource_group,
                is_managed_build=ctx.is_managed_image,
                is_catalog_sourced_build=ctx.is_catalog_image,
                keep_disk=ctx.keep_os_disk,
            )
        except ResourceNotFoundError:
            logger.info(f"Virtual machine '{ctx.compute_name}' not found; no OS disk to dispose of.")
            return [], None
        except Exception as e:
            ctx.ui.error(f"Could not retrieve OS Image details: {e}")
            message = f"Failed to find temporary OS disk on VM. Please delete manually.\n\nVM Name: {ctx.compute_name}\nError: {e}"
            return [], Outcome(MANAGED_DISK, f"{ctx.compute_name} OS disk", False, message)

        for ref in disks:
            ctx.ui.say(f" -> {ref.label:<24}: '{ref.identifier}'")
        return disks, None

    async def _cleanup_virtual_machine(self, ctx):
        ctx.ui.say("\nDeleting Virtual Machine deployment and its attached resources...")
        handle = self.handle(ctx)
        disks, disk_failure = await self._read_disks(ctx)

        try:
            inventory = await list_created_resources(self.client, handle)
        except InventoryError as e:
            ctx.ui.error(f"{e}\n Virtual Machine {ctx.compute_name}: please manually delete it and its associated resources")
            report = await teardown(self.client, handle, [], ui=ctx.ui, **self._teardown_kwargs())
            report.add(Outcome("inventory", self.deployment_name, False, str(e)))
            return report

        report = await teardown(
            self.client,
            handle,
            inventory,
            disks=disks,
            blob_client=self.blob_client,
            foreign_names=(ctx.network_security_group_name,),
            ui=ctx.ui,
            **self._teardown_kwargs(),
        )
        if disk_failure is not None:
            ctx.ui.error(disk_failure.error)
            report.add(disk_failure)
        return report
