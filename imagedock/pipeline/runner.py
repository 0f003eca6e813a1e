"""Ordered step runner: run steps until one halts, then clean up in reverse."""

import logging

from imagedock.pipeline.context import BuildContext, StepAction

logger = logging.getLogger(__name__)


async def run_steps(steps, ctx: BuildContext) -> StepAction:
    """Run each step's run() in order and every started step's cleanup() in reverse.

    Cleanup runs on both the success and the halt path.

    Returns:
        StepAction.HALT if any step halted, else StepAction.CONTINUE.
    """
    started = []
    action = StepAction.CONTINUE
    try:
        for step in steps:
            started.append(step)
            action = await step.run(ctx)
            if action is StepAction.HALT:
                logger.info(f"Step {type(step).__name__} halted the build.")
                break
    finally:
        for step in reversed(started):
            await step.cleanup(ctx)
    return action
