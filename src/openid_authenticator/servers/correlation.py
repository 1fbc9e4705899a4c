"""Correlation ID middleware for request tracing.

Generates a unique correlation ID per incoming HTTP request, sets it in
``request.state.correlation_id`` for application use and propagates it to the
response headers.  The authenticator includes it in its log records.

Secrets MUST NOT be logged. The correlation ID is a random UUID4 hex string.
"""

from __future__ import annotations

import logging
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

_HEADER_NAME = "X-Correlation-ID"
_logger = logging.getLogger("openid-authenticator.servers.correlation")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that attaches a per-request correlation ID."""

    def __init__(self, app: ASGIApp, header_name: str = _HEADER_NAME) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        # Expose in request.state for handlers / the authenticator
        request.state.correlation_id = correlation_id
        _logger.debug(
            "request %s %s", request.method, request.url.path,
            extra={"correlation_id": correlation_id},
        )
        response = await call_next(request)
        response.headers[self.header_name] = correlation_id
        return response
