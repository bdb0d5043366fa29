"""
Error taxonomy for exactfetch.

Every failure that aborts a retrieval is one of these, so callers can tell
"re-authenticate" apart from "fix your filter" apart from "try again later".
Cancellation is not an error and has no exception here.
"""

from __future__ import annotations


class ExactFetchError(Exception):
    """Base exception for all exactfetch errors."""


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthError(ExactFetchError):
    """Base for failures that require the user to (re-)authenticate."""

    requires_reauthentication = True


class Unauthenticated(AuthError):
    """No credential is present. Start the authorization-code flow."""

    def __init__(self, message: str = "Not authenticated. Log in first.") -> None:
        super().__init__(message)


class InvalidAuthorizationCode(AuthError):
    """The provider rejected the authorization-code exchange."""


class AuthExpired(AuthError):
    """The provider rejected the refresh token."""


# ---------------------------------------------------------------------------
# Transport and API
# ---------------------------------------------------------------------------


class TransportError(ExactFetchError):
    """Connection failure or timeout. Safe to retry at the caller's level."""


class ApiError(ExactFetchError):
    """The API answered with an error object or a non-success status."""

    def __init__(self, code: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"API error {code}: {message}" if code else f"API error: {message}")
        self.code = code
        self.message = message
        self.status_code = status_code


class DecodeError(ExactFetchError):
    """The response body was not valid JSON or not the expected envelope."""
