"""Teardown command: clean up a deployment left running by --no-teardown."""

import asyncio
import json
import logging
import sys
from pathlib import Path

from imagedock.commands.build import make_step
from imagedock.config import build_config_from_dict
from imagedock.pipeline import BuildContext

logger = logging.getLogger(__name__)


def handle_teardown(args):
    """Handle the teardown command."""
    asyncio.run(_handle_teardown(args))


async def _handle_teardown(args):
    state_path = Path(args.state_file)
    if not state_path.exists():
        logger.error(f"No state file found at {state_path}")
        sys.exit(1)

    try:
        state = json.loads(state_path.read_text())
        config = build_config_from_dict(state["config"])
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Invalid state file {state_path}: {e}")
        sys.exit(1)

    logger.info(f"Tearing down deployment '{config.deployment_name}' in {config.resource_group}")

    ctx = BuildContext.from_config(config)
    step = make_step(config, dry_run=args.dry_run)
    await step.cleanup(ctx)

    report = ctx.cleanup_report
    if report is None or not report.succeeded:
        logger.info(f"\nState file kept at {state_path} so the teardown can be retried.")
        sys.exit(1)
    if not args.dry_run:
        state_path.unlink()
        logger.info(f"\nAll resources cleaned up. Removed {state_path}")


def register_teardown_command(subparsers):
    """Register the teardown subcommand."""
    parser = subparsers.add_parser(
        "teardown",
        help="Delete the resources of a deployment left running by 'build --no-teardown'",
    )
    parser.add_argument("state_file", help="State file written by 'build --no-teardown'")
    parser.add_argument("--dry-run", action="store_true", help="Print requests without executing")
    parser.set_defaults(func=handle_teardown)
