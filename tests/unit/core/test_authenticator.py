"""Scenario tests for the request authenticator state machine.

Coverage:
* Challenge -> callback -> redirect round trip
* POST replay after login
* CSRF mismatch, login failure and error page handling
* Saved-request overwrite policy
* Revocation, logout, deferred authentication
* Session id in URL, I/O failure wrapping
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from openid_authenticator.core import cache, csrf, saved_request
from openid_authenticator.core.authenticator import OpenIdAuthenticator
from openid_authenticator.core.config import AuthenticatorSettings
from openid_authenticator.core.errors import AuthenticationError
from openid_authenticator.core.http import AuthRequest, BufferedResponse
from openid_authenticator.core.models import AuthOutcome, AuthStatus
from openid_authenticator.core.session import InMemorySessionStore, SessionKey

FORM = "application/x-www-form-urlencoded"


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
def _with_settings(authenticator: OpenIdAuthenticator, **kwargs) -> OpenIdAuthenticator:
    return OpenIdAuthenticator(
        authenticator.config,
        authenticator.login_service,
        authenticator.session_store,
        AuthenticatorSettings(**kwargs),
    )


def _run(
    authenticator: OpenIdAuthenticator, request: AuthRequest, mandatory: bool = True
) -> tuple[AuthOutcome, BufferedResponse]:
    response = BufferedResponse()
    authenticator.prepare_request(request)
    return authenticator.validate_request(request, response, mandatory), response


def _state_of(location: str) -> str:
    return parse_qs(urlparse(location).query)["state"][0]


def _login(authenticator, make_request, path: str = "/secret", **kwargs) -> tuple[str, str]:
    """Drive a full challenge/callback cycle; return (session_id, redirect target)."""
    req = make_request(path, **kwargs)
    outcome, response = _run(authenticator, req)
    assert outcome.status is AuthStatus.CHALLENGED
    state = _state_of(response.location or "")

    callback = make_request(
        "/j_security_check", query=f"code=ABC&state={state}", session_id=req.session_id
    )
    outcome, response = _run(authenticator, callback)
    assert outcome.status is AuthStatus.AUTHENTICATED
    assert outcome.response_sent is True
    assert callback.session_id is not None
    return callback.session_id, response.location or ""


# --------------------------------------------------------------------------- #
# Round trip                                                                  #
# --------------------------------------------------------------------------- #
def test_round_trip(authenticator, make_request, exchanger, config) -> None:
    req = make_request("/secret")
    outcome, response = _run(authenticator, req)

    assert outcome == AuthOutcome.challenged()
    assert response.status == 303
    assert response.location is not None and response.location.startswith(config.authorization_endpoint + "?")
    params = parse_qs(urlparse(response.location).query)
    assert params["response_type"] == ["code"]
    assert params["scope"][0].split(" ")[0] == "openid"

    session = authenticator.session_store.get(req.session_id or "")
    assert session is not None
    saved = saved_request.load(session)
    assert saved is not None
    assert (saved.uri, saved.method) == ("http://localhost/app/secret", "GET")

    callback = make_request(
        "/j_security_check",
        query=f"code=ABC&state={params['state'][0]}",
        session_id=req.session_id,
    )
    outcome, response = _run(authenticator, callback)
    assert outcome.status is AuthStatus.AUTHENTICATED
    assert outcome.result is not None and outcome.result.identity.subject == "alice"
    assert (response.status, response.location) == (303, "http://localhost/app/secret")
    assert exchanger.calls == [("ABC", "http://localhost/app/j_security_check")]

    # session id renewed on login
    assert callback.session_id != req.session_id
    assert authenticator.session_store.get(req.session_id or "") is None

    follow = make_request("/secret", session_id=callback.session_id)
    outcome, response = _run(authenticator, follow)
    assert outcome.status is AuthStatus.AUTHENTICATED
    assert outcome.response_sent is False
    assert response.committed is False
    assert follow.restored is True


def test_login_records_claims_and_response(authenticator, make_request) -> None:
    session_id, _ = _login(authenticator, make_request)
    session = authenticator.session_store.get(session_id)
    assert session.get(SessionKey.CLAIMS) == {"sub": "alice", "name": "Alice"}
    assert session.get(SessionKey.RESPONSE)["access_token"] == "at-ABC"


def test_http10_uses_302(authenticator, make_request) -> None:
    outcome, response = _run(authenticator, make_request(http_version="1.0"))
    assert outcome.status is AuthStatus.CHALLENGED
    assert response.status == 302


def test_redirect_defaults_to_context_root(authenticator, make_request) -> None:
    # a session with a token but nothing saved: direct hit on the callback
    session = authenticator.create_session(make_request())
    token = csrf.ensure_token(session)
    callback = make_request("/j_security_check", query=f"code=ABC&state={token}", session_id=session.id)
    outcome, response = _run(authenticator, callback)
    assert outcome.is_authenticated
    assert response.location == "/app"


# --------------------------------------------------------------------------- #
# POST replay                                                                 #
# --------------------------------------------------------------------------- #
def test_post_replay(authenticator, make_request) -> None:
    session_id, target = _login(
        authenticator,
        make_request,
        "/form",
        method="POST",
        content_type=FORM,
        form={"a": ["1"], "b": ["2"]},
    )
    assert target == "http://localhost/app/form"

    # the browser follows the 303 with a GET
    follow = make_request("/form", session_id=session_id)
    outcome, _ = _run(authenticator, follow)
    assert outcome.is_authenticated
    assert follow.method == "POST"
    assert follow.form_parameters == {"a": ["1"], "b": ["2"]}
    assert follow.restored is True

    # one shot: a second GET stays a GET
    again = make_request("/form", session_id=session_id)
    _run(authenticator, again)
    assert again.method == "GET"
    assert again.form_parameters is None


def test_replay_mismatch_keeps_cached_auth(authenticator, make_request) -> None:
    session_id, _ = _login(authenticator, make_request, "/secret")
    other = make_request("/other", session_id=session_id)
    outcome, _ = _run(authenticator, other)
    assert outcome.is_authenticated
    assert other.restored is False
    assert saved_request.load(authenticator.session_store.get(session_id)) is not None


# --------------------------------------------------------------------------- #
# Callback failures                                                           #
# --------------------------------------------------------------------------- #
def test_state_mismatch_is_forbidden_and_tolerates_retry(authenticator, make_request) -> None:
    req = make_request()
    _, response = _run(authenticator, req)
    state = _state_of(response.location or "")

    forged = make_request("/j_security_check", query="code=ABC&state=forged", session_id=req.session_id)
    outcome, response = _run(authenticator, forged)
    assert outcome.status is AuthStatus.FAILED
    assert outcome.reason == "invalid_state"
    assert response.status == 403
    session = authenticator.session_store.get(req.session_id or "")
    assert cache.load(session) is None

    retry = make_request("/j_security_check", query=f"code=ABC&state={state}", session_id=req.session_id)
    outcome, _ = _run(authenticator, retry)
    assert outcome.is_authenticated


def test_state_mismatch_ignores_error_page(authenticator, make_request) -> None:
    auth = _with_settings(authenticator, error_page="/error")
    req = make_request()
    _run(auth, req)
    forged = make_request("/j_security_check", query="code=ABC&state=nope", session_id=req.session_id)
    _, response = _run(auth, forged)
    assert response.status == 403 and response.location is None


def test_callback_without_session_is_forbidden(authenticator, make_request) -> None:
    outcome, response = _run(
        authenticator, make_request("/j_security_check", query="code=ABC&state=x", session_id="gone")
    )
    assert outcome.status is AuthStatus.FAILED
    assert response.status == 403


@pytest.mark.parametrize("query", ["state=abc", "error=access_denied&state=abc"])
def test_missing_code_fails(authenticator, make_request, query: str) -> None:
    outcome, response = _run(authenticator, make_request("/j_security_check", query=query))
    assert outcome.status is AuthStatus.FAILED
    assert response.status == 403


def test_login_failure_redirects_to_error_page(authenticator, make_request) -> None:
    auth = _with_settings(authenticator, error_page="/error?reason=login")
    req = make_request()
    _, response = _run(auth, req)
    state = _state_of(response.location or "")

    bad = make_request("/j_security_check", query=f"code=WRONG&state={state}", session_id=req.session_id)
    outcome, response = _run(auth, bad)
    assert outcome.status is AuthStatus.FAILED
    assert outcome.reason == "login_failed"
    assert (response.status, response.location) == (303, "/app/error?reason=login")


def test_unknown_subject_is_rejected(authenticator, make_request, exchanger) -> None:
    exchanger.claims_by_code["BOB"] = {"sub": "bob"}
    req = make_request()
    _, response = _run(authenticator, req)
    state = _state_of(response.location or "")
    outcome, response = _run(
        authenticator,
        make_request("/j_security_check", query=f"code=BOB&state={state}", session_id=req.session_id),
    )
    assert outcome.status is AuthStatus.FAILED
    assert response.status == 403


# --------------------------------------------------------------------------- #
# Saved request policy                                                        #
# --------------------------------------------------------------------------- #
def test_second_challenge_keeps_first_uri(authenticator, make_request) -> None:
    req = make_request("/first")
    _run(authenticator, req)
    _run(authenticator, make_request("/second", session_id=req.session_id))
    session = authenticator.session_store.get(req.session_id or "")
    assert saved_request.load(session).uri.endswith("/first")  # type: ignore[union-attr]


def test_always_save_overwrites(authenticator, make_request) -> None:
    auth = _with_settings(authenticator, always_save_uri=True)
    req = make_request("/first")
    _run(auth, req)
    _run(auth, make_request("/second", session_id=req.session_id))
    session = auth.session_store.get(req.session_id or "")
    assert saved_request.load(session).uri.endswith("/second")  # type: ignore[union-attr]


# --------------------------------------------------------------------------- #
# Revocation and logout                                                       #
# --------------------------------------------------------------------------- #
def test_revoked_identity_is_challenged(authenticator, make_request, user_store, config) -> None:
    session_id, _ = _login(authenticator, make_request)
    user_store.revoke("alice")

    outcome, response = _run(authenticator, make_request("/secret", session_id=session_id))
    assert outcome.status is AuthStatus.CHALLENGED
    assert response.location is not None and response.location.startswith(config.authorization_endpoint)
    session = authenticator.session_store.get(session_id)
    assert cache.load(session) is None
    assert session.get(SessionKey.CLAIMS) is None


def test_logout_then_challenge(authenticator, make_request) -> None:
    session_id, _ = _login(authenticator, make_request)
    session = authenticator.session_store.get(session_id)
    token = session.get(SessionKey.CSRF_TOKEN)

    authenticator.logout(make_request(session_id=session_id))
    assert cache.load(session) is None
    assert session.get(SessionKey.RESPONSE) is None

    outcome, response = _run(authenticator, make_request("/secret", session_id=session_id))
    assert outcome.status is AuthStatus.CHALLENGED
    assert _state_of(response.location or "") == token


def test_logout_without_session_is_noop(authenticator, make_request) -> None:
    authenticator.logout(make_request())
    authenticator.logout(make_request(session_id="unknown"))


# --------------------------------------------------------------------------- #
# Deferred and error page                                                     #
# --------------------------------------------------------------------------- #
def test_not_mandatory_is_deferred(authenticator, make_request) -> None:
    req = make_request("/public")
    outcome, response = _run(authenticator, req, mandatory=False)
    assert outcome.status is AuthStatus.DEFERRED
    assert response.committed is False
    assert req.session_id is None


def test_callback_processed_even_when_not_mandatory(authenticator, make_request) -> None:
    outcome, response = _run(
        authenticator, make_request("/j_security_check", query="state=x"), mandatory=False
    )
    assert outcome.status is AuthStatus.FAILED
    assert response.status == 403


def test_error_page_is_deferred(authenticator, make_request) -> None:
    auth = _with_settings(authenticator, error_page="/error?x=1")
    outcome, response = _run(auth, make_request("/error"))
    assert outcome.status is AuthStatus.DEFERRED
    assert response.committed is False


def test_deferred_response_is_not_challenged(authenticator, make_request) -> None:
    req = make_request("/secret")
    assert authenticator.resolve_deferred(req).status is AuthStatus.UNAUTHENTICATED
    assert req.session_id is None

    session_id, _ = _login(authenticator, make_request)
    outcome = authenticator.resolve_deferred(make_request("/public", session_id=session_id))
    assert outcome.is_authenticated
    assert outcome.result is not None and outcome.result.identity.subject == "alice"


def test_deferred_resolution_skips_callback(authenticator, make_request) -> None:
    req = make_request("/j_security_check", query="code=ABC&state=x")
    assert authenticator.resolve_deferred(req).status is AuthStatus.UNAUTHENTICATED


# --------------------------------------------------------------------------- #
# Environment errors                                                          #
# --------------------------------------------------------------------------- #
def test_session_id_from_url_is_fatal(authenticator, make_request) -> None:
    outcome, response = _run(authenticator, make_request(session_id="abc", from_url=True))
    assert outcome.status is AuthStatus.FAILED
    assert outcome.reason == "session_id_from_url"
    assert response.status == 403

    auth = _with_settings(authenticator, error_page="/error")
    _, response = _run(auth, make_request(session_id="abc", from_url=True))
    assert (response.status, response.location) == (303, "/app/error")


class _BrokenResponse:
    deferred = False

    def send_redirect(self, status: int, location: str) -> None:
        raise ConnectionResetError("client went away")

    def send_error(self, status: int) -> None:
        raise BrokenPipeError("client went away")


def test_io_failure_is_wrapped(authenticator, make_request) -> None:
    with pytest.raises(AuthenticationError):
        authenticator.validate_request(make_request(), _BrokenResponse())
    with pytest.raises(AuthenticationError):
        authenticator.validate_request(
            make_request("/j_security_check", query="state=x"), _BrokenResponse()
        )


# --------------------------------------------------------------------------- #
# Session capacity                                                            #
# --------------------------------------------------------------------------- #
def test_anonymous_traffic_keeps_logged_in_user(authenticator, make_request) -> None:
    auth = OpenIdAuthenticator(
        authenticator.config,
        authenticator.login_service,
        InMemorySessionStore(max_sessions=50),
        authenticator.settings,
    )
    session_id, _ = _login(auth, make_request)

    for _ in range(500):
        outcome, _ = _run(auth, make_request("/secret"))
        assert outcome.status is AuthStatus.CHALLENGED

    outcome, _ = _run(auth, make_request("/secret", session_id=session_id))
    assert outcome.status is AuthStatus.AUTHENTICATED
