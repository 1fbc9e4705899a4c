"""Request/response views consumed by the authenticator core.

The core never touches a web framework directly.  An adapter (see
:mod:`openid_authenticator.servers.middleware`) builds an :class:`AuthRequest`
from the inbound request and hands over a :class:`ResponseChannel` onto which
the core writes at most one redirect or error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable
from urllib.parse import parse_qs

from openid_authenticator.utils.urls import scheme_host_port

FORM_ENCODED = "application/x-www-form-urlencoded"

FormParameters = dict[str, list[str]]


@dataclass(slots=True)
class AuthRequest:
    """Framework-neutral view of an inbound HTTP request.

    ``method`` and ``form_parameters`` are mutable: the authenticator restores
    the original method and body of a request that was interrupted by login.
    """

    method: str
    scheme: str
    host: str
    port: int | None
    path: str
    query_string: str = ""
    context_path: str = ""
    content_type: str | None = None
    http_version: str = "1.1"
    session_id: str | None = None
    session_id_from_url: bool = False
    form_parameters: FormParameters | None = None
    correlation_id: str | None = None
    restored: bool = field(default=False)

    @property
    def request_uri(self) -> str:
        """Context path plus path within the context, no query string."""
        return (self.context_path + self.path) or "/"

    @property
    def path_in_context(self) -> str:
        return self.path or "/"

    @property
    def request_url(self) -> str:
        """Reconstructed absolute URL including the query string."""
        url = scheme_host_port(self.scheme, self.host, self.port) + self.request_uri
        if self.query_string:
            url = f"{url}?{self.query_string}"
        return url

    def parameter(self, name: str) -> str | None:
        """First value of *name* from the query string, then the form body."""
        values = parse_qs(self.query_string, keep_blank_values=True).get(name)
        if values:
            return values[0]
        if self.form_parameters and self.form_parameters.get(name):
            return self.form_parameters[name][0]
        return None

    @property
    def is_form_post(self) -> bool:
        if self.method.upper() != "POST" or not self.content_type:
            return False
        return self.content_type.split(";", 1)[0].strip().lower() == FORM_ENCODED

    def redirect_code(self) -> int:
        """303 for HTTP/1.1 and later, 302 for older clients."""
        try:
            version = float(self.http_version)
        except ValueError:
            version = 1.1
        return 302 if version < 1.1 else 303


@runtime_checkable
class ResponseChannel(Protocol):
    """Where the core writes its single response decision."""

    deferred: bool

    def send_redirect(self, status: int, location: str) -> None: ...

    def send_error(self, status: int) -> None: ...


class BufferedResponse:
    """Record the redirect or error chosen by the core for the adapter to send."""

    deferred = False

    def __init__(self) -> None:
        self.status: int | None = None
        self.location: str | None = None

    @property
    def committed(self) -> bool:
        return self.status is not None

    def send_redirect(self, status: int, location: str) -> None:
        if self.committed:
            raise OSError("response already committed")
        self.status = status
        self.location = location

    def send_error(self, status: int) -> None:
        if self.committed:
            raise OSError("response already committed")
        self.status = status


class DeferredResponse:
    """Non-committing response used when authentication is resolved lazily.

    Writes are discarded; the authenticator checks :attr:`deferred` and returns
    ``UNAUTHENTICATED`` instead of issuing a challenge.
    """

    deferred = True

    def send_redirect(self, status: int, location: str) -> None:  # noqa: ARG002
        return None

    def send_error(self, status: int) -> None:  # noqa: ARG002
        return None
