"""Error taxonomy shared by the auth, client and sync layers."""

from __future__ import annotations


class CxError(Exception):
    """Base class for every expected cx-tools failure."""


class AuthError(CxError):
    """Missing or unusable credentials. Fatal for the invocation."""


class TokenExpiredError(AuthError):
    """The refresh token was rejected; the operator must run ``cx configure`` again."""


class NetworkError(CxError):
    """Transport-level failure (DNS, refused connection, timeout)."""


class HttpError(CxError):
    """Non-2xx response from the remote API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeError(CxError):
    """A token is not a structurally valid JWT."""


class ConfigError(CxError):
    """A required setting (usually the AppScope) is not configured."""
