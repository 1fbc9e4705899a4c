"""Process the provider's redirect back to the callback path.

Steps, in order:

1. No ``code`` parameter -> failed or abandoned flow.
2. ``state`` must equal the session's CSRF token, otherwise 403.  The token is
   left in place on mismatch.
3. The code is redeemed through the login service (blocking network I/O).
4. On success the session is authenticated and the browser is redirected to
   the request that started the flow.
5. On failure the browser gets a 403, or is redirected to the configured
   error page.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from openid_authenticator.core import csrf, saved_request
from openid_authenticator.core.challenge import CALLBACK_PATH, callback_url
from openid_authenticator.core.config import AuthenticatorSettings
from openid_authenticator.core.errors import AuthenticationError
from openid_authenticator.core.http import AuthRequest, ResponseChannel
from openid_authenticator.core.log_utils import get_auth_logger
from openid_authenticator.core.login import OpenIdCredentials
from openid_authenticator.core.models import AuthOutcome
from openid_authenticator.core.session import Session
from openid_authenticator.utils.urls import add_paths

if TYPE_CHECKING:  # pragma: no cover
    from openid_authenticator.core.authenticator import OpenIdAuthenticator

FORBIDDEN: Final[int] = 403
_DELIMITERS: Final[str] = ";#/?"


def is_callback(uri: str) -> bool:
    """True if *uri* contains the callback path followed by end or a delimiter."""
    idx = uri.find(CALLBACK_PATH)
    if idx < 0:
        return False
    end = idx + len(CALLBACK_PATH)
    return end == len(uri) or uri[end] in _DELIMITERS


def send_redirect(response: ResponseChannel, status: int, location: str) -> None:
    try:
        response.send_redirect(status, location)
    except OSError as exc:
        raise AuthenticationError(f"could not send redirect: {exc}") from exc


def send_error(response: ResponseChannel, status: int) -> None:
    try:
        response.send_error(status)
    except OSError as exc:
        raise AuthenticationError(f"could not send error {status}: {exc}") from exc


def send_failure(
    request: AuthRequest, response: ResponseChannel, settings: AuthenticatorSettings
) -> None:
    """403 without an error page, otherwise redirect to it."""
    if settings.error_page is None:
        send_error(response, FORBIDDEN)
    else:
        send_redirect(
            response,
            request.redirect_code(),
            add_paths(request.context_path, settings.error_page),
        )


class CallbackHandler:
    """Handle requests to the callback path for one authenticator."""

    def __init__(self, authenticator: OpenIdAuthenticator) -> None:
        self.authenticator = authenticator

    def handle(
        self,
        request: AuthRequest,
        response: ResponseChannel,
        session: Session | None,
    ) -> AuthOutcome:
        log = get_auth_logger(
            base_logger_name="openid-authenticator.core.callback",
            session_id=session.id if session else None,
            correlation_id=request.correlation_id,
        )
        settings = self.authenticator.settings

        code = request.parameter("code")
        if code is not None:
            state = request.parameter("state")
            if session is None or not csrf.validate(session, state):
                log.warning("auth failed 403: invalid state parameter")
                send_error(response, FORBIDDEN)
                return AuthOutcome.failed("invalid_state")

            credentials = OpenIdCredentials(code=code, redirect_uri=callback_url(request))
            logged_in = self.authenticator.login(credentials, request, session)
            if logged_in is not None:
                result, session = logged_in
                target = saved_request.resolve_redirect_target(session, request)
                log.debug("authenticated %s -> %s", result.identity.subject, target)
                send_redirect(response, request.redirect_code(), target)
                return AuthOutcome.authenticated(result, response_sent=True)
            reason = "login_failed"
        else:
            # provider-side errors (access_denied, ...) arrive without a code
            reason = request.parameter("error") or "missing_code"

        log.debug("OpenID authentication FAILED (%s)", reason)
        send_failure(request, response, settings)
        return AuthOutcome.failed(reason)
