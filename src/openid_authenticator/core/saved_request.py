"""Preserve the original request across the login detour.

Before a challenge redirect the authenticator records the request's
reconstructed URL, method and (for form-encoded POSTs) body parameters.  After
login the browser is sent back to that URL; when it arrives the saved method
and body are restored so the application sees the request it was originally
sent.

Two independent records are written:

``URI`` / ``METHOD`` / ``POST``
    The saved request proper, consumed by :func:`try_restore` on the first
    request whose URL matches exactly.
``DESTINATION``
    The post-login redirect target, consumed by
    :func:`resolve_redirect_target` right after a successful callback.
"""

from __future__ import annotations

import copy
import logging

from openid_authenticator.core.http import AuthRequest, FormParameters
from openid_authenticator.core.models import NO_RESTORE, RestoreOutcome, SavedRequest
from openid_authenticator.core.session import Session, SessionKey

_LOG = logging.getLogger("openid-authenticator.core.saved_request")


def _copy_form(form: FormParameters | None) -> FormParameters | None:
    return copy.deepcopy(form) if form is not None else None


def load(session: Session) -> SavedRequest | None:
    """Return the saved request without consuming it."""
    with session.lock:
        uri = session.get(SessionKey.URI)
        if not uri:
            return None
        return SavedRequest(
            uri=uri,
            method=session.get(SessionKey.METHOD) or "GET",
            form_parameters=_copy_form(session.get(SessionKey.POST)),
        )


def save(session: Session, request: AuthRequest, always_save: bool = False) -> bool:
    """Remember *request* unless a request is already saved.

    With ``always_save`` the saved request is overwritten every time.
    Returns True if anything was written.
    """
    with session.lock:
        if session.get(SessionKey.URI) is not None and not always_save:
            return False

        url = request.request_url
        session.set(SessionKey.URI, url)
        session.set(SessionKey.METHOD, request.method.upper())
        session.set(SessionKey.DESTINATION, url)
        if request.is_form_post:
            session.set(SessionKey.POST, _copy_form(request.form_parameters) or {})
        else:
            session.remove(SessionKey.POST)
    _LOG.debug("Saved original request %s %s", request.method, url)
    return True


def try_restore(session: Session, request: AuthRequest) -> RestoreOutcome:
    """Consume the saved request if *request* targets exactly the same URL."""
    with session.lock:
        uri = session.get(SessionKey.URI)
        if uri is None:
            return NO_RESTORE
        if uri != request.request_url:
            return NO_RESTORE

        method = session.remove(SessionKey.METHOD)
        form = session.remove(SessionKey.POST)
        session.remove(SessionKey.URI)
    _LOG.debug("Restored original request %s %s", method, uri)
    return RestoreOutcome(restored=True, method=method, form_parameters=form)


def resolve_redirect_target(session: Session, request: AuthRequest) -> str:
    """Return where to send the browser after login.

    Falls back to the saved URI and then to the context root.
    """
    with session.lock:
        target = session.remove(SessionKey.DESTINATION) or session.get(SessionKey.URI)
    if not target:
        target = request.context_path or "/"
    return target


def restore_method(session: Session, request: AuthRequest) -> bool:
    """Put back the original method on a post-login request to the saved URL.

    Browsers replay a redirect that followed a POST as a GET.  Only applies
    when the session is already authenticated; the saved request is left in
    place for :func:`try_restore`.
    """
    with session.lock:
        if session.get(SessionKey.AUTHENTICATED) is None:
            return False
        uri = session.get(SessionKey.URI)
        method = session.get(SessionKey.METHOD)
    if not uri or not method or uri != request.request_url:
        return False

    if request.method != method:
        _LOG.debug(
            "Restoring original method %s for %s with method %s",
            method,
            uri,
            request.method,
        )
    request.method = method
    return True
