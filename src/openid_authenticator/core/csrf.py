"""Anti-forgery ``state`` token kept in the session.

The *state* parameter protects the user against CSRF on the callback: the
provider echoes back whatever was sent with the challenge, and the callback is
accepted only if the echoed value equals the session's token exactly.

* The token is generated lazily on the first challenge and reused by every
  later challenge of the same session.
* A failed comparison leaves the token in place, so the pending challenge
  stays valid for a retried callback.

Logging
-------
Only a masked prefix of the token is ever logged.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from typing import Final

from openid_authenticator.core.session import Session, SessionKey
from openid_authenticator.utils.logging import mask_sensitive

_LOG = logging.getLogger("openid-authenticator.core.csrf")

# 24 random bytes -> 192 bits, well above the 130 bits required
_TOKEN_BYTES: Final[int] = 24


def _new_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)


def ensure_token(session: Session) -> str:
    """Return the session's CSRF token, generating one if absent."""
    with session.lock:
        token = session.get(SessionKey.CSRF_TOKEN)
        if not token:
            token = _new_token()
            session.set(SessionKey.CSRF_TOKEN, token)
            _LOG.debug("Issued csrf token=%s", mask_sensitive(token, 4))
        return token


def validate(session: Session, supplied_state: str | None) -> bool:
    """Return True iff a token exists and equals *supplied_state* exactly."""
    with session.lock:
        token = session.get(SessionKey.CSRF_TOKEN)
    if not token or supplied_state is None:
        return False
    # exact match, no normalisation
    return hmac.compare_digest(token.encode("utf-8"), supplied_state.encode("utf-8"))
