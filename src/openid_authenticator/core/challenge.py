"""Build the redirect that starts an authorization-code flow.

The callback URL is derived only from the request's scheme, host, port and
context path, so the value sent with the challenge is byte-identical to the
one sent again during the code exchange.  Providers reject the exchange
otherwise.
"""

from __future__ import annotations

import logging
from typing import Final
from urllib.parse import quote

from openid_authenticator.core import csrf
from openid_authenticator.core.config import OpenIdConfiguration
from openid_authenticator.core.http import AuthRequest
from openid_authenticator.core.session import Session
from openid_authenticator.utils.logging import mask_sensitive
from openid_authenticator.utils.urls import scheme_host_port

_LOG = logging.getLogger("openid-authenticator.core.challenge")

CALLBACK_PATH: Final[str] = "/j_security_check"
OPENID_SCOPE: Final[str] = "openid"


def _encode(value: str) -> str:
    # form-style encoding: space -> '+', everything else reserved is escaped
    return quote(value, safe="", encoding="utf-8").replace("%20", "+")


def callback_url(request: AuthRequest) -> str:
    """Return the fixed redirect URI registered with the provider."""
    return (
        scheme_host_port(request.scheme, request.host, request.port)
        + request.context_path
        + CALLBACK_PATH
    )


def scope_value(config: OpenIdConfiguration) -> str:
    """``openid`` followed by the configured scopes, space separated."""
    extra = [s for s in config.scopes if s and s != OPENID_SCOPE]
    return " ".join([OPENID_SCOPE, *extra])


def build_challenge_url(
    request: AuthRequest, session: Session, config: OpenIdConfiguration
) -> str:
    """Return the provider authorization URL for *request*."""
    token = csrf.ensure_token(session)
    redirect_uri = callback_url(request)

    query = "&".join(
        (
            f"client_id={_encode(config.client_id)}",
            f"redirect_uri={_encode(redirect_uri)}",
            f"scope={_encode(scope_value(config))}",
            f"state={_encode(token)}",
            "response_type=code",
        )
    )
    separator = "&" if "?" in config.authorization_endpoint else "?"
    url = f"{config.authorization_endpoint}{separator}{query}"

    _LOG.debug(
        "Built challenge for redirect_uri=%s state=%s",
        redirect_uri,
        mask_sensitive(token, 4),
    )
    return url
