"""Typed, immutable records used by the authenticator core."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from openid_authenticator.core.clock import default_clock
from openid_authenticator.core.http import FormParameters


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """Application-level identity produced by a login service."""

    subject: str
    name: str | None = None
    roles: tuple[str, ...] = ()

    def is_user_in_role(self, role: str) -> bool:
        return role in self.roles


@dataclass(frozen=True, slots=True)
class VerifiedClaims:
    """Result of redeeming an authorization code at the token endpoint."""

    claims: Mapping[str, Any]
    token_response: Mapping[str, Any]

    @property
    def subject(self) -> str | None:
        sub = self.claims.get("sub")
        return str(sub) if sub is not None else None


@dataclass(frozen=True, slots=True)
class AuthenticationResult:
    """Completed authentication cached in the session."""

    identity: UserIdentity
    raw_credentials: Any
    claims: Mapping[str, Any]
    token_response: Mapping[str, Any]
    method: str = "OPENID"
    authenticated_at: int = field(default_factory=lambda: int(default_clock()))

    def __post_init__(self) -> None:
        # freeze the mappings handed in by the login path
        object.__setattr__(self, "claims", MappingProxyType(dict(self.claims)))
        object.__setattr__(
            self, "token_response", MappingProxyType(dict(self.token_response))
        )


@dataclass(frozen=True, slots=True)
class SavedRequest:
    """The original request preserved across the login detour.

    ``form_parameters`` is set only for form-encoded POST requests.
    """

    uri: str
    method: str
    form_parameters: FormParameters | None = None


@dataclass(frozen=True, slots=True)
class RestoreOutcome:
    """What :func:`~openid_authenticator.core.saved_request.try_restore` found."""

    restored: bool
    method: str | None = None
    form_parameters: FormParameters | None = None


NO_RESTORE = RestoreOutcome(restored=False)


class AuthStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    CHALLENGED = "challenged"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"
    DEFERRED = "deferred"


class RequestState(str, Enum):
    """Dispatch states the authenticator walks through for one request."""

    NOT_MANDATORY = "not_mandatory"
    IS_CALLBACK = "is_callback"
    IS_ERROR_PAGE = "is_error_page"
    CACHED_VALID = "cached_valid"
    CACHED_REVOKED = "cached_revoked"
    NEEDS_CHALLENGE = "needs_challenge"


@dataclass(frozen=True, slots=True)
class AuthOutcome:
    """Uniform result of one authentication decision.

    ``response_sent`` is True when the core already wrote a redirect or error
    and the caller must not run the application for this request.
    """

    status: AuthStatus
    result: AuthenticationResult | None = None
    reason: str | None = None
    response_sent: bool = False

    @classmethod
    def deferred(cls) -> AuthOutcome:
        return cls(AuthStatus.DEFERRED)

    @classmethod
    def unauthenticated(cls) -> AuthOutcome:
        return cls(AuthStatus.UNAUTHENTICATED)

    @classmethod
    def challenged(cls) -> AuthOutcome:
        return cls(AuthStatus.CHALLENGED, response_sent=True)

    @classmethod
    def authenticated(
        cls, result: AuthenticationResult, *, response_sent: bool = False
    ) -> AuthOutcome:
        return cls(AuthStatus.AUTHENTICATED, result=result, response_sent=response_sent)

    @classmethod
    def failed(cls, reason: str) -> AuthOutcome:
        return cls(AuthStatus.FAILED, reason=reason, response_sent=True)

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED
