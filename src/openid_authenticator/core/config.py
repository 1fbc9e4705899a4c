"""Provider and authenticator configuration.

Both records are immutable once built.  ``from_env`` constructors read the
``OIDC_*`` environment variables; tests construct them with keywords.

Environment variables
---------------------
OIDC_ISSUER
    Provider issuer URL.  Used for discovery when the endpoints are unset.
OIDC_AUTHORIZATION_ENDPOINT / OIDC_TOKEN_ENDPOINT
    Explicit endpoints; skip discovery when both are set.
OIDC_CLIENT_ID / OIDC_CLIENT_SECRET
    Client credentials registered with the provider.
OIDC_SCOPES
    Extra scopes requested on top of ``openid`` (comma or space separated).
OIDC_ERROR_PAGE
    Path (within the application) to redirect to when login fails.
OIDC_ALWAYS_SAVE_URI
    Overwrite the saved request on every challenge.
OIDC_PROTECTED_PATHS
    Path prefixes that require authentication (default: everything).
OIDC_PUBLIC_PATHS
    Path prefixes left open inside the protected ones (default: /healthz).
OIDC_SESSION_COOKIE / OIDC_SESSION_TTL
    Session cookie name and idle timeout in seconds.
OIDC_MAX_SESSIONS
    Capacity of each in-memory session pool (pending and authenticated).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Final

import requests

from openid_authenticator.core.errors import ConfigurationError
from openid_authenticator.utils.environment import env_flag, env_int, env_list
from openid_authenticator.utils.urls import strip_query

_LOG = logging.getLogger("openid-authenticator.core.config")

WELL_KNOWN_PATH: Final[str] = "/.well-known/openid-configuration"
DEFAULT_SESSION_COOKIE: Final[str] = "OIDCSESSIONID"
DEFAULT_PUBLIC_PATHS: Final[tuple[str, ...]] = ("/healthz",)


@dataclass(frozen=True, slots=True)
class OpenIdConfiguration:
    """Identity-provider endpoints and client credentials."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    client_id: str
    client_secret: str = ""
    scopes: tuple[str, ...] = ()
    # fields from the discovery document kept for collaborators
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ConfigurationError("client_id is required")
        if not self.authorization_endpoint or not self.token_endpoint:
            raise ConfigurationError("authorization and token endpoints are required")

    @classmethod
    def discover(
        cls,
        issuer: str,
        *,
        client_id: str,
        client_secret: str = "",
        scopes: tuple[str, ...] | list[str] = (),
        timeout: tuple[int, int] = (5, 20),
    ) -> OpenIdConfiguration:
        """Build a configuration from the provider's discovery document."""
        url = issuer.rstrip("/") + WELL_KNOWN_PATH
        try:
            resp = requests.get(url, timeout=timeout)
        except requests.RequestException as exc:
            raise ConfigurationError(f"discovery request failed: {exc}") from exc
        if not resp.ok:
            raise ConfigurationError(
                f"discovery endpoint returned {resp.status_code}: {resp.text[:200]}"
            )
        try:
            doc = resp.json()
        except ValueError as exc:
            raise ConfigurationError("discovery document is not JSON") from exc

        authorization_endpoint = doc.get("authorization_endpoint")
        token_endpoint = doc.get("token_endpoint")
        if not authorization_endpoint or not token_endpoint:
            raise ConfigurationError("discovery document missing endpoints")

        discovered_issuer = doc.get("issuer") or issuer
        if discovered_issuer.rstrip("/") != issuer.rstrip("/"):
            raise ConfigurationError(
                f"issuer mismatch: expected {issuer}, got {discovered_issuer}"
            )

        _LOG.info("Discovered OpenID provider %s", discovered_issuer)
        return cls(
            issuer=discovered_issuer,
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
            client_id=client_id,
            client_secret=client_secret,
            scopes=tuple(scopes),
            metadata=dict(doc),
        )

    @classmethod
    def from_env(cls) -> OpenIdConfiguration:
        issuer = os.getenv("OIDC_ISSUER", "").strip()
        client_id = os.getenv("OIDC_CLIENT_ID", "")
        client_secret = os.getenv("OIDC_CLIENT_SECRET", "")
        scopes = tuple(env_list("OIDC_SCOPES"))
        authorization_endpoint = os.getenv("OIDC_AUTHORIZATION_ENDPOINT", "")
        token_endpoint = os.getenv("OIDC_TOKEN_ENDPOINT", "")

        if authorization_endpoint and token_endpoint:
            return cls(
                issuer=issuer,
                authorization_endpoint=authorization_endpoint,
                token_endpoint=token_endpoint,
                client_id=client_id,
                client_secret=client_secret,
                scopes=scopes,
            )
        if not issuer:
            raise ConfigurationError(
                "OIDC_ISSUER or both OIDC_AUTHORIZATION_ENDPOINT and OIDC_TOKEN_ENDPOINT must be set"
            )
        return cls.discover(
            issuer, client_id=client_id, client_secret=client_secret, scopes=scopes
        )


def _normalize_error_page(path: str | None) -> str | None:
    if path is None or not path.strip():
        return None
    if not path.startswith("/"):
        _LOG.warning("error page must start with /")
        path = "/" + path
    return path


def _under_any(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(
        path == prefix or path.startswith(prefix.rstrip("/") + "/")
        for prefix in prefixes
    )


@dataclass(frozen=True, slots=True)
class AuthenticatorSettings:
    """Behaviour switches of the request authenticator.

    ``error_page`` is the redirect target (may carry a query string);
    ``error_path`` is the same path without the query, compared against the
    request path to avoid redirect loops.
    """

    error_page: str | None = None
    always_save_uri: bool = False
    protected_paths: tuple[str, ...] = ("/",)
    public_paths: tuple[str, ...] = DEFAULT_PUBLIC_PATHS
    session_cookie_name: str = DEFAULT_SESSION_COOKIE
    session_ttl_seconds: int = 1800
    max_sessions: int = 10_000

    def __post_init__(self) -> None:
        object.__setattr__(self, "error_page", _normalize_error_page(self.error_page))

    @property
    def error_path(self) -> str | None:
        return strip_query(self.error_page) if self.error_page else None

    def is_error_page(self, path_in_context: str | None) -> bool:
        return path_in_context is not None and path_in_context == self.error_path

    def is_protected(self, path_in_context: str) -> bool:
        if _under_any(path_in_context, self.public_paths):
            return False
        return _under_any(path_in_context, self.protected_paths)

    @classmethod
    def from_env(cls) -> AuthenticatorSettings:
        protected = tuple(env_list("OIDC_PROTECTED_PATHS")) or ("/",)
        public = tuple(env_list("OIDC_PUBLIC_PATHS")) or DEFAULT_PUBLIC_PATHS
        return cls(
            error_page=os.getenv("OIDC_ERROR_PAGE"),
            always_save_uri=env_flag("OIDC_ALWAYS_SAVE_URI"),
            protected_paths=protected,
            public_paths=public,
            session_cookie_name=os.getenv("OIDC_SESSION_COOKIE") or DEFAULT_SESSION_COOKIE,
            session_ttl_seconds=env_int("OIDC_SESSION_TTL", 1800),
            max_sessions=env_int("OIDC_MAX_SESSIONS", 10_000),
        )
