"""Application factory wiring the authenticator into a Starlette app."""

from __future__ import annotations

import logging
from typing import Sequence

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import BaseRoute, Route

from openid_authenticator.core.authenticator import OpenIdAuthenticator
from openid_authenticator.core.config import AuthenticatorSettings, OpenIdConfiguration
from openid_authenticator.core.login import LoginService, OpenIdLoginService, TokenEndpointClient
from openid_authenticator.core.session import InMemorySessionStore, SessionStore
from openid_authenticator.servers.correlation import CorrelationIdMiddleware
from openid_authenticator.servers.middleware import OpenIdAuthMiddleware
from openid_authenticator.servers.routes import register_auth_routes

logger = logging.getLogger("openid-authenticator.servers.app")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def build_authenticator(
    config: OpenIdConfiguration | None = None,
    settings: AuthenticatorSettings | None = None,
    *,
    login_service: LoginService | None = None,
    session_store: SessionStore | None = None,
) -> OpenIdAuthenticator:
    """Assemble an authenticator, reading the environment for missing parts."""
    config = config or OpenIdConfiguration.from_env()
    settings = settings or AuthenticatorSettings.from_env()
    login_service = login_service or OpenIdLoginService(TokenEndpointClient(config))
    session_store = session_store or InMemorySessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        max_sessions=settings.max_sessions,
    )
    return OpenIdAuthenticator(config, login_service, session_store, settings)


def create_app(
    routes: Sequence[BaseRoute] = (),
    *,
    authenticator: OpenIdAuthenticator | None = None,
    auth_base_path: str = "/auth",
    debug: bool = False,
) -> Starlette:
    """Return a Starlette app whose *routes* sit behind the authenticator.

    ``/healthz`` is registered as well and is one of the default
    ``public_paths``, so probes reach it without logging in.
    """
    authenticator = authenticator or build_authenticator()
    app = Starlette(
        debug=debug,
        routes=[Route("/healthz", health_check, methods=["GET"]), *routes],
        middleware=[
            Middleware(CorrelationIdMiddleware),
            Middleware(OpenIdAuthMiddleware, authenticator=authenticator),
        ],
    )
    register_auth_routes(app, authenticator, base_path=auth_base_path)
    logger.info(
        "OpenID authenticator ready (client_id=%s, protected=%s)",
        authenticator.config.client_id,
        ",".join(authenticator.settings.protected_paths),
    )
    return app
