#!/usr/bin/env python3
"""Azure image build tools: CLI entrypoint."""

import argparse

from imagedock.commands.build import register_build_command
from imagedock.commands.teardown import register_teardown_command
from imagedock.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Azure image build tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging with logger names")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_build_command(subparsers)
    register_teardown_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
