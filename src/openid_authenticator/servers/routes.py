"""Session endpoints for applications behind the authenticator.

Handlers are intentionally thin:

1. Translate the Starlette request into the core's request view.
2. Delegate to :class:`~openid_authenticator.core.authenticator.OpenIdAuthenticator`.
3. Return an appropriate Starlette ``Response`` type.

SECURITY NOTE
-------------
The raw provider response (access token, ID token) is never returned; only
the identity and the ID token claims are exposed.
"""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from openid_authenticator.core.authenticator import OpenIdAuthenticator
from openid_authenticator.servers.middleware import authenticate, build_auth_request

_LOG = logging.getLogger("openid-authenticator.servers.routes")


def register_auth_routes(
    app: Starlette,
    authenticator: OpenIdAuthenticator,
    *,
    base_path: str = "/auth",
) -> None:
    """Attach the session endpoints to *app* under *base_path*."""

    # ----- GET /auth/me --------------------------------------------------- #
    async def _me(request: Request) -> Response:
        outcome = await authenticate(request)
        if not outcome.is_authenticated or outcome.result is None:
            return JSONResponse({"error": "unauthenticated"}, status_code=401)

        result = outcome.result
        return JSONResponse(
            {
                "subject": result.identity.subject,
                "name": result.identity.name,
                "roles": list(result.identity.roles),
                "claims": dict(result.claims),
                "authenticated_at": result.authenticated_at,
            }
        )

    # ----- POST /auth/logout ---------------------------------------------- #
    async def _logout(request: Request) -> Response:
        auth_request = build_auth_request(
            request, authenticator.settings.session_cookie_name
        )
        authenticator.logout(auth_request)
        _LOG.info(
            "Logged out correlation_id=%s",
            getattr(request.state, "correlation_id", "-"),
        )
        return Response(status_code=204)

    app.add_route(f"{base_path}/me", _me, methods=["GET"])
    app.add_route(f"{base_path}/logout", _logout, methods=["POST"])
