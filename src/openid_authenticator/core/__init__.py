"""OpenID Connect authenticator core.

This namespace hosts the **HTTP-agnostic** state machine that authenticates
requests with the OAuth 2.0 authorization-code flow.  Web adapters build an
:class:`AuthRequest`, hand over a :class:`ResponseChannel` and act on the
returned :class:`AuthOutcome`.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
http
    Framework-neutral request/response views.
session
    Sessions, the session attribute schema and the in-memory store.
csrf
    Anti-forgery ``state`` token.
saved_request
    Save and replay the request interrupted by login.
cache
    Session-scoped cache of completed authentications.
challenge
    Provider authorization URL.
callback
    Processing of the provider's redirect back.
login
    Code exchange, credentials and identity lookup.
authenticator
    The per-request dispatcher.
config
    Provider and behaviour settings.
errors
    Exception types.
log_utils
    Structured logging helpers.

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .authenticator import OpenIdAuthenticator  # noqa: F401
from .callback import is_callback  # noqa: F401
from .challenge import CALLBACK_PATH, build_challenge_url, callback_url  # noqa: F401
from .clock import Clock, default_clock  # noqa: F401
from .config import AuthenticatorSettings, OpenIdConfiguration  # noqa: F401
from .errors import AuthenticationError, ConfigurationError, VerificationError  # noqa: F401
from .http import (  # noqa: F401
    AuthRequest,
    BufferedResponse,
    DeferredResponse,
    FormParameters,
    ResponseChannel,
)
from .log_utils import get_auth_logger  # noqa: F401
from .login import (  # noqa: F401
    CodeExchanger,
    InMemoryUserStore,
    LoginService,
    OpenIdCredentials,
    OpenIdLoginService,
    TokenEndpointClient,
    UserStore,
)
from .models import (  # noqa: F401
    AuthenticationResult,
    AuthOutcome,
    AuthStatus,
    RequestState,
    RestoreOutcome,
    SavedRequest,
    UserIdentity,
    VerifiedClaims,
)
from .session import InMemorySessionStore, Session, SessionKey, SessionStore  # noqa: F401

__all__ = [
    # dispatcher
    "OpenIdAuthenticator",
    "is_callback",
    # challenge
    "CALLBACK_PATH",
    "build_challenge_url",
    "callback_url",
    # clock
    "Clock",
    "default_clock",
    # config
    "AuthenticatorSettings",
    "OpenIdConfiguration",
    # errors
    "AuthenticationError",
    "ConfigurationError",
    "VerificationError",
    # http views
    "AuthRequest",
    "BufferedResponse",
    "DeferredResponse",
    "FormParameters",
    "ResponseChannel",
    # logging helpers
    "get_auth_logger",
    # login
    "CodeExchanger",
    "InMemoryUserStore",
    "LoginService",
    "OpenIdCredentials",
    "OpenIdLoginService",
    "TokenEndpointClient",
    "UserStore",
    # models
    "AuthenticationResult",
    "AuthOutcome",
    "AuthStatus",
    "RequestState",
    "RestoreOutcome",
    "SavedRequest",
    "UserIdentity",
    "VerifiedClaims",
    # sessions
    "InMemorySessionStore",
    "Session",
    "SessionKey",
    "SessionStore",
]
