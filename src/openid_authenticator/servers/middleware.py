"""ASGI middleware running the OpenID authenticator in front of an application.

For every HTTP request the middleware

1. resolves the session id from the session cookie (or, flagged as an error,
   from the URL),
2. builds an :class:`~openid_authenticator.core.http.AuthRequest`, reading the
   body only for form-encoded POSTs,
3. runs ``prepare_request`` and ``validate_request`` in a worker thread since
   the core blocks on the token endpoint,
4. either sends the redirect/403 chosen by the core, or forwards the request
   with the restored method and body and the outcome in
   ``request.state.auth``.

SECURITY NOTE
-------------
The session cookie is ``HttpOnly`` and ``SameSite=Lax``: the provider's
top-level redirect back to the callback must carry it, cross-site POSTs must
not.  Session ids, codes and tokens are never logged in full.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import parse_qsl, urlencode

from starlette.concurrency import run_in_threadpool
from starlette.requests import HTTPConnection, Request
from starlette.responses import PlainTextResponse, RedirectResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from openid_authenticator.core.authenticator import OpenIdAuthenticator
from openid_authenticator.core.config import AuthenticatorSettings
from openid_authenticator.core.http import (
    FORM_ENCODED,
    AuthRequest,
    BufferedResponse,
    FormParameters,
)
from openid_authenticator.core.models import AuthOutcome
from openid_authenticator.utils.logging import mask_sensitive

logger = logging.getLogger("openid-authenticator.servers.middleware")

STATE_AUTH = "auth"
STATE_AUTHENTICATOR = "openid_authenticator"


def parse_form(body: bytes) -> FormParameters:
    """Decode an urlencoded body into an ordered name -> values mapping."""
    form: FormParameters = {}
    for name, value in parse_qsl(body.decode("utf-8", "replace"), keep_blank_values=True):
        form.setdefault(name, []).append(value)
    return form


def _path_in_context(scope: Scope) -> tuple[str, str]:
    root_path: str = scope.get("root_path", "") or ""
    path: str = scope.get("path", "") or "/"
    if root_path and path.startswith(root_path):
        path = path[len(root_path):] or "/"
    return root_path, path


def session_id_of(conn: HTTPConnection, cookie_name: str) -> tuple[str | None, bool]:
    """Return ``(session_id, from_url)`` for *conn*; the cookie wins."""
    cookie = conn.cookies.get(cookie_name)
    if cookie:
        return cookie, False
    from_url = conn.query_params.get(cookie_name)
    if from_url:
        return from_url, True
    return None, False


def build_auth_request(
    conn: HTTPConnection,
    cookie_name: str,
    *,
    form_parameters: FormParameters | None = None,
) -> AuthRequest:
    """Translate a Starlette connection into the core's request view."""
    scope = conn.scope
    context_path, path = _path_in_context(scope)
    session_id, from_url = session_id_of(conn, cookie_name)
    state = scope.get("state") or {}
    return AuthRequest(
        method=scope.get("method", "GET"),
        scheme=conn.url.scheme,
        host=conn.url.hostname or "localhost",
        port=conn.url.port,
        path=path,
        query_string=scope.get("query_string", b"").decode("latin-1"),
        context_path=context_path,
        content_type=conn.headers.get("content-type"),
        http_version=scope.get("http_version", "1.1"),
        session_id=session_id,
        session_id_from_url=from_url,
        form_parameters=form_parameters,
        correlation_id=state.get("correlation_id"),
    )


async def authenticate(request: Request) -> AuthOutcome:
    """Resolve authentication for a request the middleware left deferred.

    Never sends a challenge: returns the cached authentication or
    ``UNAUTHENTICATED``.
    """
    outcome: AuthOutcome | None = getattr(request.state, STATE_AUTH, None)
    if outcome is not None and outcome.is_authenticated:
        return outcome
    authenticator: OpenIdAuthenticator = getattr(request.state, STATE_AUTHENTICATOR)
    auth_request = build_auth_request(request, authenticator.settings.session_cookie_name)
    outcome = await run_in_threadpool(authenticator.resolve_deferred, auth_request)
    request.state.auth = outcome
    return outcome


class OpenIdAuthMiddleware:
    """Pure ASGI middleware guarding *app* with an :class:`OpenIdAuthenticator`."""

    def __init__(self, app: ASGIApp, authenticator: OpenIdAuthenticator) -> None:
        self.app = app
        self.authenticator = authenticator

    @property
    def settings(self) -> AuthenticatorSettings:
        return self.authenticator.settings

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # copy scope before modifying it
        scope_copy: Scope = dict(scope)
        scope_copy.setdefault("state", {})
        request = Request(scope_copy, receive)

        body: bytes | None = None
        form: FormParameters | None = None
        content_type = (request.headers.get("content-type") or "").split(";", 1)[0]
        if request.method == "POST" and content_type.strip().lower() == FORM_ENCODED:
            body = await request.body()
            form = parse_form(body)

        cookie_name = self.settings.session_cookie_name
        auth_request = build_auth_request(request, cookie_name, form_parameters=form)
        inbound_session = auth_request.session_id
        mandatory = self.settings.is_protected(auth_request.path_in_context)

        response = BufferedResponse()
        outcome = await run_in_threadpool(self._authenticate, auth_request, response, mandatory)

        set_cookie: list[tuple[bytes, bytes]] = []
        if auth_request.session_id and auth_request.session_id != inbound_session:
            set_cookie = self._session_cookie(auth_request)

        if outcome.response_sent:
            await self._send_decision(response, set_cookie, scope_copy, receive, send)
            return

        scope_copy["state"][STATE_AUTH] = outcome
        scope_copy["state"][STATE_AUTHENTICATOR] = self.authenticator
        if outcome.result is not None:
            scope_copy["user"] = outcome.result.identity
            scope_copy["auth"] = outcome.result

        if auth_request.method != scope_copy["method"]:
            logger.debug(
                "Dispatching %s as %s", scope_copy["method"], auth_request.method
            )
            scope_copy["method"] = auth_request.method
        if auth_request.restored and auth_request.form_parameters is not None:
            body = urlencode(auth_request.form_parameters, doseq=True).encode("utf-8")
            scope_copy["headers"] = self._form_headers(scope_copy["headers"], body)

        downstream_receive = self._replay_receive(body, receive) if body is not None else receive

        async def send_with_cookie(message: Message) -> None:
            if message["type"] == "http.response.start" and set_cookie:
                message = dict(message)
                message["headers"] = list(message.get("headers", [])) + set_cookie
            await send(message)

        await self.app(scope_copy, downstream_receive, send_with_cookie)

    # ------------------------------------------------------------------ #
    # helpers                                                            #
    # ------------------------------------------------------------------ #
    def _authenticate(
        self, auth_request: AuthRequest, response: BufferedResponse, mandatory: bool
    ) -> AuthOutcome:
        self.authenticator.prepare_request(auth_request)
        outcome = self.authenticator.validate_request(auth_request, response, mandatory)
        logger.debug(
            "%s %s -> %s session=%s",
            auth_request.method,
            auth_request.request_uri,
            outcome.status.value,
            mask_sensitive(auth_request.session_id, 6),
        )
        return outcome

    def _session_cookie(self, auth_request: AuthRequest) -> list[tuple[bytes, bytes]]:
        carrier = Response()
        carrier.set_cookie(
            self.settings.session_cookie_name,
            auth_request.session_id or "",
            path=auth_request.context_path or "/",
            secure=auth_request.scheme == "https",
            httponly=True,
            samesite="lax",
        )
        return [(k, v) for k, v in carrier.raw_headers if k == b"set-cookie"]

    async def _send_decision(
        self,
        response: BufferedResponse,
        set_cookie: list[tuple[bytes, bytes]],
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        reply: Response
        if response.location is not None:
            reply = RedirectResponse(response.location, status_code=response.status or 303)
        else:
            status = response.status or 403
            reply = PlainTextResponse("Forbidden" if status == 403 else "", status_code=status)
        reply.raw_headers.extend(set_cookie)
        await reply(scope, receive, send)

    @staticmethod
    def _form_headers(headers: Any, body: bytes) -> list[tuple[bytes, bytes]]:
        kept = [
            (k, v)
            for k, v in headers
            if k.lower() not in (b"content-type", b"content-length")
        ]
        kept.append((b"content-type", FORM_ENCODED.encode("latin-1")))
        kept.append((b"content-length", str(len(body)).encode("ascii")))
        return kept

    @staticmethod
    def _replay_receive(body: bytes, receive: Receive) -> Receive:
        sent = False

        async def replay() -> Message:
            nonlocal sent
            if not sent:
                sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        return replay
