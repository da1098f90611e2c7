"""Exceptions raised by the bibliotheek.be client."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class LibraryClientError(Exception):
    """Base exception for library client errors."""
    pass


class AuthFailure(str, Enum):
    """Reason a login attempt was rejected."""
    MISSING_PARAMETERS = "missing_parameters"
    CREDENTIALS_REJECTED = "credentials_rejected"
    VERIFICATION_FAILED = "verification_failed"
    NETWORK = "network"


class AuthError(LibraryClientError):
    """Raised when the login protocol fails."""

    def __init__(self, reason: AuthFailure, message: str):
        super().__init__(message)
        self.reason = reason


class SessionError(LibraryClientError):
    """Raised when an authenticated request is made before login()."""
    pass


class FetchError(LibraryClientError):
    """Raised when a request fails at the transport level or returns an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SessionExpiredError(FetchError):
    """Raised when the session stays logged out even after a re-login."""
    pass


class ParseError(LibraryClientError):
    """Raised when a mandatory payload does not have the expected shape."""
    pass
