"""Shared fixtures: a fake code exchanger and request builders.

No test performs network I/O; the token endpoint is replaced by
:class:`FakeExchanger` or a monkeypatched ``requests.post``.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from openid_authenticator.core.authenticator import OpenIdAuthenticator
from openid_authenticator.core.config import AuthenticatorSettings, OpenIdConfiguration
from openid_authenticator.core.errors import VerificationError
from openid_authenticator.core.http import AuthRequest
from openid_authenticator.core.login import InMemoryUserStore, OpenIdLoginService
from openid_authenticator.core.models import VerifiedClaims
from openid_authenticator.core.session import InMemorySessionStore

AUTH_ENDPOINT = "https://idp.example.com/authorize"
TOKEN_ENDPOINT = "https://idp.example.com/token"


class FakeExchanger:
    """CodeExchanger accepting only codes listed in *claims_by_code*."""

    def __init__(self, claims_by_code: dict[str, dict[str, Any]] | None = None) -> None:
        self.claims_by_code = claims_by_code or {"ABC": {"sub": "alice", "name": "Alice"}}
        self.calls: list[tuple[str, str]] = []

    def exchange_code(self, code: str, redirect_uri: str) -> VerifiedClaims:
        self.calls.append((code, redirect_uri))
        claims = self.claims_by_code.get(code)
        if claims is None:
            raise VerificationError("invalid_grant")
        return VerifiedClaims(
            claims=claims,
            token_response={"access_token": f"at-{code}", "id_token": "x.y.z"},
        )


@pytest.fixture()
def config() -> OpenIdConfiguration:
    return OpenIdConfiguration(
        issuer="https://idp.example.com",
        authorization_endpoint=AUTH_ENDPOINT,
        token_endpoint=TOKEN_ENDPOINT,
        client_id="my-client",
        client_secret="s3cret",
        scopes=("profile", "email"),
    )


@pytest.fixture()
def exchanger() -> FakeExchanger:
    return FakeExchanger()


@pytest.fixture()
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore({"alice": ["user"]})


@pytest.fixture()
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def settings() -> AuthenticatorSettings:
    return AuthenticatorSettings()


@pytest.fixture()
def authenticator(
    config: OpenIdConfiguration,
    exchanger: FakeExchanger,
    user_store: InMemoryUserStore,
    session_store: InMemorySessionStore,
    settings: AuthenticatorSettings,
) -> OpenIdAuthenticator:
    login_service = OpenIdLoginService(exchanger, user_store=user_store)
    return OpenIdAuthenticator(config, login_service, session_store, settings)


@pytest.fixture()
def make_request() -> Callable[..., AuthRequest]:
    """Return a builder for requests against ``http://localhost/app``."""

    def _make(
        path: str = "/secret",
        *,
        method: str = "GET",
        query: str = "",
        session_id: str | None = None,
        content_type: str | None = None,
        form: dict[str, list[str]] | None = None,
        http_version: str = "1.1",
        from_url: bool = False,
    ) -> AuthRequest:
        return AuthRequest(
            method=method,
            scheme="http",
            host="localhost",
            port=80,
            path=path,
            query_string=query,
            context_path="/app",
            content_type=content_type,
            http_version=http_version,
            session_id=session_id,
            session_id_from_url=from_url,
            form_parameters=form,
        )

    return _make
