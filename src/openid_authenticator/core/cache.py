"""Session-scoped cache of completed authentications."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from openid_authenticator.core.models import AuthenticationResult
from openid_authenticator.core.session import Session, SessionKey

if TYPE_CHECKING:  # pragma: no cover
    from openid_authenticator.core.login import LoginService

_LOG = logging.getLogger("openid-authenticator.core.cache")


def store(session: Session, result: AuthenticationResult) -> None:
    """Cache *result* together with its claims and raw provider response."""
    with session.lock:
        session.set(SessionKey.AUTHENTICATED, result)
        session.set(SessionKey.CLAIMS, dict(result.claims))
        session.set(SessionKey.RESPONSE, dict(result.token_response))


def load(session: Session | None) -> AuthenticationResult | None:
    if session is None:
        return None
    return session.get(SessionKey.AUTHENTICATED)


def invalidate(session: Session) -> None:
    """Drop the cached authentication, claims and response records.

    The saved request and the CSRF token are left alone.
    """
    with session.lock:
        session.remove(SessionKey.AUTHENTICATED)
        session.remove(SessionKey.CLAIMS)
        session.remove(SessionKey.RESPONSE)


def is_still_valid(result: AuthenticationResult, login_service: LoginService | None) -> bool:
    """Ask the login service whether the cached identity was revoked."""
    if login_service is None:
        return True
    valid = login_service.validate(result.identity)
    if not valid:
        _LOG.debug("Identity %s no longer valid", result.identity.subject)
    return valid
