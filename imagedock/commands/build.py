"""Build command: deploy the template, then tear its resources down."""

import asyncio
import json
import logging
import os
import sys

import yaml

from imagedock.config import build_config_to_dict, load_build_config, load_template
from imagedock.pipeline import BuildContext, StepAction, StepDeployTemplate, run_steps
from imagedock.provisioning import ArmClient, BlobClient, make_token_provider

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "deployment.json"


def template_from_config(config):
    """Template factory: read the ARM template the config points at."""
    return load_template(config.template)


def make_step(config, dry_run=False):
    """Wire gateways and the deploy-template step for *config*."""
    token_provider = make_token_provider(dry_run=dry_run)
    client = ArmClient(token_provider, api_url=config.api_url, dry_run=dry_run)
    blob_client = BlobClient(token_provider, dry_run=dry_run)
    return StepDeployTemplate(client, config, template_from_config, blob_client=blob_client)


def write_state_file(path, config):
    """Record what `imagedock teardown` needs to clean this deployment up later."""
    state = {"config": build_config_to_dict(config)}
    with open(path, "w") as f:
        json.dump(state, f, indent=2)


def handle_build(args):
    """Handle the build command."""
    rc = asyncio.run(_handle_build(args))
    if rc != 0:
        sys.exit(rc)


async def _handle_build(args):
    try:
        config = load_build_config(args.config)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        logger.error(f"Error loading build config {args.config}: {e}")
        return 1

    ctx = BuildContext.from_config(config)
    step = make_step(config, dry_run=args.dry_run)

    logger.info(f"Build: {config.compute_name} in {config.resource_group} (deployment '{config.deployment_name}')")
    if config.storage_account:
        logger.info(f" -> StorageAccount    : '{config.storage_account}'")

    if args.no_teardown:
        action = await step.run(ctx)
        state_file = args.state_file or os.path.join(os.path.dirname(os.path.abspath(args.config)), STATE_FILE_NAME)
        write_state_file(state_file, config)
        logger.info(f"\nSkipping teardown (--no-teardown). Clean up later with: imagedock teardown {state_file}")
        return 0 if action is StepAction.CONTINUE else 1

    action = await run_steps([step], ctx)

    for ref in ctx.artifact_disks:
        logger.info(f"Kept {ref.label}: {ref.identifier}")

    if action is StepAction.HALT:
        logger.error(f"\nBuild failed: {ctx.error}")
        return 1
    if ctx.cleanup_report is not None and not ctx.cleanup_report.succeeded:
        return 1
    logger.info("\nBuild finished.")
    return 0


def register_build_command(subparsers):
    """Register the build subcommand."""
    parser = subparsers.add_parser("build", help="Deploy the build template, then delete everything it created")
    parser.add_argument("config", help="Path to the build config YAML")
    parser.add_argument("--dry-run", action="store_true", help="Print requests without executing")
    parser.add_argument(
        "--no-teardown",
        action="store_true",
        help="Leave the deployment's resources in place and write a state file for 'imagedock teardown'",
    )
    parser.add_argument(
        "--state-file",
        default=None,
        help=f"State file written with --no-teardown (default: {STATE_FILE_NAME} next to the config)",
    )
    parser.set_defaults(func=handle_build)
