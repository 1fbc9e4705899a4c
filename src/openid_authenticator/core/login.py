"""Login collaborators: code exchange, credentials and identity lookup.

:class:`TokenEndpointClient` redeems an authorization code at the provider's
token endpoint and validates the returned ID token's claims.  The token is
received directly from the provider over TLS, so its signature is not
checked; ``iss``, ``aud``, ``azp`` and ``exp`` are.

:class:`OpenIdLoginService` turns verified claims into a
:class:`~openid_authenticator.core.models.UserIdentity` and answers the
per-request revocation check.

No secrets (codes, tokens, client secret) are ever logged.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

import jwt
import requests

from openid_authenticator.core.config import OpenIdConfiguration
from openid_authenticator.core.errors import VerificationError
from openid_authenticator.core.models import UserIdentity, VerifiedClaims

_LOG = logging.getLogger("openid-authenticator.core.login")


# --------------------------------------------------------------------------- #
# Code exchange                                                               #
# --------------------------------------------------------------------------- #
@runtime_checkable
class CodeExchanger(Protocol):
    """Redeem an authorization code for verified claims."""

    def exchange_code(self, code: str, redirect_uri: str) -> VerifiedClaims: ...


class TokenEndpointClient(CodeExchanger):
    """Blocking :class:`CodeExchanger` that talks to the provider with ``requests``."""

    def __init__(
        self,
        config: OpenIdConfiguration,
        *,
        timeout: tuple[int, int] = (5, 20),
        leeway: int = 30,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self.leeway = leeway

    def exchange_code(self, code: str, redirect_uri: str) -> VerifiedClaims:
        payload: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.config.client_id,
        }
        if self.config.client_secret:
            payload["client_secret"] = self.config.client_secret  # noqa: S105

        try:
            resp = requests.post(self.config.token_endpoint, data=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise VerificationError(
                "token_request_failed", message=f"Token request failed: {exc}"
            ) from exc

        if not resp.ok:
            raise VerificationError(
                "token_endpoint_error",
                message=f"Token endpoint returned {resp.status_code}: {resp.text[:200]}",
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise VerificationError("invalid_token_response") from exc

        id_token = data.get("id_token") if isinstance(data, dict) else None
        if not id_token:
            raise VerificationError(
                "missing_id_token", message="Token response missing id_token"
            )

        claims = self.decode_id_token(id_token)
        _LOG.info("Redeemed authorization code for sub=%s", claims.get("sub"))
        return VerifiedClaims(claims=claims, token_response=data)

    def decode_id_token(self, id_token: str) -> dict[str, Any]:
        """Decode *id_token* and validate its registered claims."""
        issuer = self.config.issuer or None
        try:
            claims = jwt.decode(
                id_token,
                options={
                    "verify_signature": False,
                    "verify_exp": True,
                    "verify_aud": True,
                    "verify_iss": issuer is not None,
                    "require": ["sub", "aud", "exp"],
                },
                audience=self.config.client_id,
                issuer=issuer,
                leeway=self.leeway,
            )
        except jwt.PyJWTError as exc:
            raise VerificationError("invalid_id_token", message=str(exc)) from exc

        audience = claims.get("aud")
        azp = claims.get("azp")
        if isinstance(audience, list) and len(audience) > 1 and azp is None:
            raise VerificationError(
                "invalid_id_token", message="multiple audiences without azp"
            )
        if azp is not None and azp != self.config.client_id:
            raise VerificationError("invalid_id_token", message="azp mismatch")
        return claims


# --------------------------------------------------------------------------- #
# Credentials                                                                 #
# --------------------------------------------------------------------------- #
@dataclass(slots=True)
class OpenIdCredentials:
    """Authorization code plus, once redeemed, its claims and raw response."""

    code: str
    redirect_uri: str
    claims: Mapping[str, Any] | None = field(default=None, repr=False)
    token_response: Mapping[str, Any] | None = field(default=None, repr=False)

    @property
    def redeemed(self) -> bool:
        return self.claims is not None

    def redeem(self, exchanger: CodeExchanger) -> VerifiedClaims:
        """Exchange the code once; later calls return the same claims."""
        if self.claims is None:
            verified = exchanger.exchange_code(self.code, self.redirect_uri)
            self.claims = verified.claims
            self.token_response = verified.token_response
        return VerifiedClaims(claims=self.claims, token_response=self.token_response or {})

    def __repr__(self) -> str:
        return f"OpenIdCredentials(redirect_uri={self.redirect_uri!r}, redeemed={self.redeemed})"


# --------------------------------------------------------------------------- #
# Identity lookup                                                             #
# --------------------------------------------------------------------------- #
@runtime_checkable
class UserStore(Protocol):
    """Roles and revocation status of known subjects."""

    def roles_for(self, subject: str) -> tuple[str, ...] | None: ...
    def is_active(self, subject: str) -> bool: ...
    def is_revoked(self, subject: str) -> bool: ...


class InMemoryUserStore(UserStore):
    """Thread-safe :class:`UserStore` kept in process memory."""

    def __init__(self, users: Mapping[str, Iterable[str]] | None = None) -> None:
        self._lock = threading.Lock()
        self._roles: dict[str, tuple[str, ...]] = {
            subject: tuple(roles) for subject, roles in (users or {}).items()
        }
        self._revoked: set[str] = set()

    def add(self, subject: str, roles: Iterable[str] = ()) -> None:
        with self._lock:
            self._roles[subject] = tuple(roles)
            self._revoked.discard(subject)

    def revoke(self, subject: str) -> None:
        with self._lock:
            self._roles.pop(subject, None)
            self._revoked.add(subject)

    def is_revoked(self, subject: str) -> bool:
        with self._lock:
            return subject in self._revoked

    def roles_for(self, subject: str) -> tuple[str, ...] | None:
        with self._lock:
            return self._roles.get(subject)

    def is_active(self, subject: str) -> bool:
        with self._lock:
            return subject in self._roles


@runtime_checkable
class LoginService(Protocol):
    """Turn credentials into an identity and report revocation."""

    def login(self, credentials: OpenIdCredentials) -> UserIdentity | None: ...
    def validate(self, identity: UserIdentity) -> bool: ...


class OpenIdLoginService(LoginService):
    """Login service backed by a :class:`CodeExchanger`.

    Without a ``user_store`` every verified subject is accepted and never
    revoked.  With one, unknown subjects are rejected unless
    ``authenticate_new_users`` is set, and revoked subjects fail
    :meth:`validate` on their next request.
    """

    def __init__(
        self,
        exchanger: CodeExchanger,
        *,
        user_store: UserStore | None = None,
        authenticate_new_users: bool = False,
    ) -> None:
        self.exchanger = exchanger
        self.user_store = user_store
        self.authenticate_new_users = authenticate_new_users

    def login(self, credentials: OpenIdCredentials) -> UserIdentity | None:
        try:
            verified = credentials.redeem(self.exchanger)
        except VerificationError as exc:
            _LOG.warning("OpenID login failed: %s", exc.to_payload())
            return None

        subject = verified.subject
        if not subject:
            _LOG.warning("OpenID login failed: claims carry no subject")
            return None

        roles: tuple[str, ...] = ()
        if self.user_store is not None:
            known = self.user_store.roles_for(subject)
            if known is None and not self.authenticate_new_users:
                _LOG.info("Rejected unknown subject %s", subject)
                return None
            roles = known or ()

        claims = verified.claims
        name = claims.get("name") or claims.get("preferred_username") or claims.get("email")
        return UserIdentity(subject=subject, name=name, roles=roles)

    def validate(self, identity: UserIdentity) -> bool:
        if self.user_store is None:
            return True
        if self.user_store.is_active(identity.subject):
            return True
        if self.authenticate_new_users:
            return not self.user_store.is_revoked(identity.subject)
        return False
