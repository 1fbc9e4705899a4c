"""Starlette adapter for the authenticator core."""

from .app import create_app  # noqa: F401
from .correlation import CorrelationIdMiddleware  # noqa: F401
from .middleware import OpenIdAuthMiddleware, authenticate  # noqa: F401
from .routes import register_auth_routes  # noqa: F401

__all__ = [
    "create_app",
    "CorrelationIdMiddleware",
    "OpenIdAuthMiddleware",
    "authenticate",
    "register_auth_routes",
]
