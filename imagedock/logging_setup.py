"""CLI logging setup: plain %(message)s output with secret redaction."""

import logging
import sys

from imagedock.redact import SecretRedactingFilter


def setup_cli_logging(verbose=False):
    """Configure the root logger for CLI commands.

    Output is plain messages on stdout. With *verbose*, records are prefixed
    with the logger name and DEBUG is enabled.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    fmt = "[%(name)s] %(message)s" if verbose else "%(message)s"
    handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
    # httpx logs each request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
