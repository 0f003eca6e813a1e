"""Typed build context shared between pipeline steps, and the UI sink."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from imagedock.provisioning.types import CleanupReport, DiskReference


class StepAction(Enum):
    CONTINUE = "continue"
    HALT = "halt"


class Ui(Protocol):
    def say(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingUi:
    """Routes progress to logger.info and errors to logger.error."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("imagedock")

    def say(self, message):
        self.logger.info(message)

    def error(self, message):
        self.logger.error(message)


@dataclass
class BuildContext:
    """State read and written by the pipeline steps of one build.

    ``disk_disposed_upstream`` is set by an earlier step (image capture)
    that already deleted or kept the OS disk itself; cleanup then leaves
    the disks alone and only removes the remaining resources.
    """

    subscription_id: str
    resource_group: str
    compute_name: str
    is_managed_image: bool = False
    is_catalog_image: bool = False
    keep_os_disk: bool = False
    disk_disposed_upstream: bool = False
    storage_account: str = ""
    network_security_group_name: str = ""
    ui: Ui = field(default_factory=LoggingUi)
    error: Exception | None = None
    artifact_disks: list[DiskReference] = field(default_factory=list)
    cleanup_report: CleanupReport | None = None

    @classmethod
    def from_config(cls, config, ui=None):
        return cls(
            subscription_id=config.subscription_id,
            resource_group=config.resource_group,
            compute_name=config.compute_name,
            is_managed_image=config.managed_image,
            is_catalog_image=config.shared_image_gallery,
            keep_os_disk=config.keep_os_disk,
            storage_account=config.storage_account,
            network_security_group_name=config.network_security_group_name,
            ui=ui or LoggingUi(),
        )
