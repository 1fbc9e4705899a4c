"""Logging helpers: secret masking and root logger setup."""

from __future__ import annotations

import logging
import sys


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Mask a secret, keeping only the first *keep_chars* characters."""
    if not value:
        return ""
    if len(value) <= keep_chars:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars)


def setup_logging(level: int = logging.WARNING) -> logging.Logger:
    """Configure the ``openid-authenticator`` logger hierarchy.

    Returns the package logger so callers can tweak it further.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root.addHandler(handler)

    logger = logging.getLogger("openid-authenticator")
    logger.setLevel(level)
    return logger
