"""Request authenticator: the per-request OpenID Connect state machine.

:meth:`OpenIdAuthenticator.validate_request` runs once for every inbound
request and decides, first match wins:

1. authentication not mandatory and not the callback      -> DEFERRED
2. the configured error page, response not deferred       -> DEFERRED
3. session id carried in the URL instead of a cookie      -> FAILED
4. the callback path                                      -> callback handler
5. cached authentication still valid                      -> AUTHENTICATED
   (revoked entries are dropped and fall through)
6. response is deferred, a challenge cannot be sent       -> UNAUTHENTICATED
7. otherwise save the request and redirect to the provider -> CHALLENGED

:meth:`OpenIdAuthenticator.prepare_request` is the pre-dispatch hook that
restores the original HTTP method of a request interrupted by login.
"""

from __future__ import annotations

from openid_authenticator.core import cache, saved_request
from openid_authenticator.core.callback import (
    CallbackHandler,
    is_callback,
    send_failure,
    send_redirect,
)
from openid_authenticator.core.challenge import build_challenge_url
from openid_authenticator.core.config import AuthenticatorSettings, OpenIdConfiguration
from openid_authenticator.core.http import AuthRequest, DeferredResponse, ResponseChannel
from openid_authenticator.core.log_utils import get_auth_logger
from openid_authenticator.core.login import LoginService, OpenIdCredentials
from openid_authenticator.core.models import (
    AuthenticationResult,
    AuthOutcome,
    RequestState,
)
from openid_authenticator.core.session import Session, SessionStore

AUTH_METHOD = "OPENID"


class OpenIdAuthenticator:
    """Authenticate requests with the OpenID Connect authorization-code flow."""

    def __init__(
        self,
        config: OpenIdConfiguration,
        login_service: LoginService,
        session_store: SessionStore,
        settings: AuthenticatorSettings | None = None,
    ) -> None:
        self.config = config
        self.login_service = login_service
        self.session_store = session_store
        self.settings = settings or AuthenticatorSettings()
        self.callback_handler = CallbackHandler(self)

    # ------------------------------------------------------------------ #
    # Sessions                                                           #
    # ------------------------------------------------------------------ #
    def get_session(self, request: AuthRequest) -> Session | None:
        if not request.session_id:
            return None
        return self.session_store.get(request.session_id)

    def create_session(self, request: AuthRequest) -> Session:
        """Start a session and write its id back to ``request.session_id``.

        The HTTP layer compares it with the inbound id to issue the cookie.
        """
        session = self.session_store.create()
        request.session_id = session.id
        return session

    def _log(self, request: AuthRequest):
        return get_auth_logger(
            base_logger_name="openid-authenticator.core.authenticator",
            session_id=request.session_id,
            correlation_id=request.correlation_id,
        )

    # ------------------------------------------------------------------ #
    # Login / logout                                                     #
    # ------------------------------------------------------------------ #
    def login(
        self,
        credentials: OpenIdCredentials,
        request: AuthRequest,
        session: Session,
    ) -> tuple[AuthenticationResult, Session] | None:
        """Log in with *credentials*; on success cache the result in the session.

        The session id is renewed so an id planted before login is useless
        afterwards.  Returns the result and the (renewed) session.
        """
        identity = self.login_service.login(credentials)
        if identity is None:
            return None

        result = AuthenticationResult(
            identity=identity,
            raw_credentials=credentials,
            claims=credentials.claims or {},
            token_response=credentials.token_response or {},
            method=AUTH_METHOD,
        )
        session = self.session_store.renew(session)
        request.session_id = session.id
        cache.store(session, result)
        self._log(request).debug("login %s", identity.subject)
        return result, session

    def logout(self, request: AuthRequest) -> None:
        """Forget the session's authentication; pending challenge state stays."""
        session = self.get_session(request)
        if session is None:
            return
        cache.invalidate(session)
        self._log(request).debug("logout")

    # ------------------------------------------------------------------ #
    # Request processing                                                 #
    # ------------------------------------------------------------------ #
    def prepare_request(self, request: AuthRequest) -> bool:
        """Restore the saved method on the post-login request to the saved URL."""
        session = self.get_session(request)
        if session is None:
            return False
        return saved_request.restore_method(session, request)

    def _classify(
        self, request: AuthRequest, response: ResponseChannel, mandatory: bool
    ) -> RequestState | None:
        if is_callback(request.request_uri):
            return RequestState.IS_CALLBACK
        if not mandatory:
            return RequestState.NOT_MANDATORY
        if self.settings.is_error_page(request.path_in_context) and not response.deferred:
            return RequestState.IS_ERROR_PAGE
        return None

    def validate_request(
        self,
        request: AuthRequest,
        response: ResponseChannel,
        mandatory: bool = True,
    ) -> AuthOutcome:
        """Decide how *request* is authenticated; see the module docstring."""
        log = self._log(request)
        state = self._classify(request, response, mandatory)
        if state in (RequestState.NOT_MANDATORY, RequestState.IS_ERROR_PAGE):
            log.debug("auth deferred (%s) %s", state.value, request.request_uri)
            return AuthOutcome.deferred()

        if request.session_id_from_url:
            log.debug("Session ID should be cookie for OpenID authentication to work")
            send_failure(request, response, self.settings)
            return AuthOutcome.failed("session_id_from_url")

        session = self.get_session(request)
        if state is RequestState.IS_CALLBACK:
            return self.callback_handler.handle(request, response, session)

        result = cache.load(session)
        if result is not None and session is not None:
            if cache.is_still_valid(result, self.login_service):
                self._replay(session, request)
                log.debug("auth %s (%s)", result.identity.subject, RequestState.CACHED_VALID.value)
                return AuthOutcome.authenticated(result)
            log.debug("auth revoked %s (%s)", result.identity.subject, RequestState.CACHED_REVOKED.value)
            cache.invalidate(session)

        if response.deferred:
            log.debug("auth deferred, cannot challenge")
            return AuthOutcome.unauthenticated()

        if session is None:
            session = self.create_session(request)
        saved_request.save(session, request, self.settings.always_save_uri)
        challenge_uri = build_challenge_url(request, session, self.config)
        log.debug("challenge (%s) -> %s", RequestState.NEEDS_CHALLENGE.value, self.config.authorization_endpoint)
        send_redirect(response, request.redirect_code(), challenge_uri)
        return AuthOutcome.challenged()

    def _replay(self, session: Session, request: AuthRequest) -> None:
        outcome = saved_request.try_restore(session, request)
        if not outcome.restored:
            return
        if outcome.method:
            request.method = outcome.method
        if outcome.form_parameters is not None:
            request.form_parameters = outcome.form_parameters
        request.restored = True

    def resolve_deferred(self, request: AuthRequest) -> AuthOutcome:
        """Authenticate a previously deferred request without sending anything.

        Returns the cached authentication or ``UNAUTHENTICATED``.
        """
        if is_callback(request.request_uri):
            return AuthOutcome.unauthenticated()
        outcome = self.validate_request(request, DeferredResponse(), mandatory=True)
        if outcome.is_authenticated and not outcome.response_sent:
            return outcome
        return AuthOutcome.unauthenticated()
