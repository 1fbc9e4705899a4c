"""Structured logging helpers for authenticator components.

The adapter restricts **which** contextual attributes are attached to log
records so that secrets never leak.  Only these *non-sensitive* fields are
injected:

- ``session_id``     – the session identifier (first 6 chars kept)
- ``correlation_id`` – request correlation id set by the HTTP layer

Usage
-----
>>> from openid_authenticator.core.log_utils import get_auth_logger
>>> log = get_auth_logger(session_id="0f1e2d3c4b5a", correlation_id="abc")
>>> log.info("challenge sent")
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted auth context into log records."""

    extra_keys = ("session_id", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if k == "session_id" and extra and extra.get("session_id"):
                extra_clean[k] = str(extra["session_id"])[:6]
            elif extra and extra.get(k) is not None:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "openid-authenticator.core",
    session_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthLoggerAdapter(
        logger,
        {"session_id": session_id, "correlation_id": correlation_id},
    )
