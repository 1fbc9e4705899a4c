"""Utility functions for reading authenticator settings from the environment."""

from __future__ import annotations

import logging
import os
from typing import Final, Tuple

logger = logging.getLogger("openid-authenticator.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def env_flag(name: str, default: bool = False) -> bool:
    """Return True if ``name`` is set to a truthy value."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return _truthy(raw)


def env_list(name: str) -> list[str]:
    """Split a comma or whitespace separated variable into a list."""
    raw = os.getenv(name) or ""
    return [item for item in raw.replace(",", " ").split() if item]


def env_int(name: str, default: int) -> int:
    """Return ``name`` as an integer, falling back to *default* on bad input."""
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s", name)
        return default
