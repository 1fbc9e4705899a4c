"""Exception types raised by the authenticator core.

Only lightweight, **data-carrying** exceptions live here so that the HTTP
layer can transform them into responses.  Protocol violations (bad ``state``)
and verification failures are *not* raised to the caller of
:meth:`~openid_authenticator.core.authenticator.OpenIdAuthenticator.validate_request`;
they end up as a 403 or an error-page redirect.
"""

from __future__ import annotations


class AuthenticationError(RuntimeError):
    """Raised when the authentication layer cannot write its response.

    Wraps the underlying I/O error so callers see a single exception type.
    """


class ConfigurationError(ValueError):
    """Raised when the provider or authenticator configuration is unusable."""


class VerificationError(Exception):
    """Raised when an authorization code cannot be turned into verified claims."""

    def __init__(self, reason: str, *, message: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason: str = reason

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {
            "error": "verification_failed",
            "reason": self.reason,
            "message": str(self),
        }
