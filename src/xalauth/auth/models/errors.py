"""Exception hierarchy for Xbox Live token exchange errors.

Provides specific exception types for the different failure modes so callers
can tell a dead network from a malformed response or a broken device key.
"""

from __future__ import annotations


class XalAuthError(Exception):
    """Base exception for all token broker errors."""

    pass


class NetworkError(XalAuthError):
    """Raised when a network call still fails after the retry budget is spent.

    Covers transport failures, timeouts and non-2xx responses.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        attempts: int = 0,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.attempts = attempts
        self.status_code = status_code


class ParseError(XalAuthError):
    """Raised when a successful response body is not valid JSON or is
    missing required fields. Never retried."""

    pass


class CryptoError(XalAuthError):
    """Raised when key generation, key deserialization or signing fails."""

    pass


class StateError(XalAuthError):
    """Raised when an operation is called in the wrong state.

    For example refreshing without a cached user token, or redeeming a
    redirect URL that carries no authorization code.
    """

    pass


class DeviceCodeError(XalAuthError):
    """Raised when device-code polling returns a non-pending error."""

    pass


class DeviceCodeTimeoutError(DeviceCodeError):
    """Raised when the user did not complete the device-code login in time."""

    pass
