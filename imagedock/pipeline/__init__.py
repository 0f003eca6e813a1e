"""Build pipeline: typed context, step runner and the deploy-template step."""

from imagedock.pipeline.context import BuildContext, LoggingUi, StepAction, Ui
from imagedock.pipeline.deploy_template import StepDeployTemplate
from imagedock.pipeline.runner import run_steps

__all__ = [
    "BuildContext",
    "LoggingUi",
    "StepAction",
    "StepDeployTemplate",
    "Ui",
    "run_steps",
]
