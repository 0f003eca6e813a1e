"""Centralized secret redaction for logs.

Masks the values of the Azure credential variables in ``_SECRET_ENV_VARS``,
such as the service principal client secret and the storage account key.
"""

import logging
import os
import re

# Env vars whose values should be redacted from all output
_SECRET_ENV_VARS = [
    "AZURE_CLIENT_SECRET",
    "ARM_CLIENT_SECRET",
    "AZURE_ACCESS_TOKEN",
    "AZURE_STORAGE_ACCESS_TOKEN",
    "AZURE_STORAGE_KEY",
]

_MIN_SECRET_LENGTH = 8  # skip short values to avoid false positives


def _collect_secret_values() -> set[str]:
    values = set()
    for var in _SECRET_ENV_VARS:
        val = os.environ.get(var, "")
        if len(val) >= _MIN_SECRET_LENGTH:
            values.add(val)
    return values


def _build_patterns(values: set[str]) -> list[re.Pattern]:
    # Longest first so a secret containing another secret is masked whole
    return [re.compile(re.escape(v)) for v in sorted(values, key=len, reverse=True)]


_patterns: list[re.Pattern] | None = None


def _get_patterns() -> list[re.Pattern]:
    global _patterns
    if _patterns is None:
        _patterns = _build_patterns(_collect_secret_values())
    return _patterns


def _apply(text: str, patterns: list[re.Pattern]) -> str:
    for p in patterns:
        text = p.sub("***", text)
    return text


def redact_secrets(text: str) -> str:
    """Replace known secret env var values with '***'."""
    return _apply(text, _get_patterns())


class SecretRedactingFilter(logging.Filter):
    """Logging filter that masks secret values (tokens, client secrets) in records.

    Handles both pre-formatted f-string messages and %-style msg + args.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        patterns = _get_patterns()
        if patterns:
            record.msg = _apply(str(record.msg), patterns)
            if record.args:
                if isinstance(record.args, dict):
                    record.args = {k: _apply(v, patterns) if isinstance(v, str) else v for k, v in record.args.items()}
                elif isinstance(record.args, tuple):
                    record.args = tuple(_apply(a, patterns) if isinstance(a, str) else a for a in record.args)
        return True
