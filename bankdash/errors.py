"""
Error taxonomy for the banking client.

Every failure surfaced to callers is one of four kinds:
  ValidationError → local, caught before anything is sent
  AuthError       → credentials rejected or the session is gone
  ServerError     → the API answered with a non-2xx status
  NetworkError    → the request never completed
"""

from __future__ import annotations


class BankdashError(Exception):
    """Base class. ``detail`` is the human-readable message, if any."""

    default_detail = "Request failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(detail or self.default_detail)

    def message(self, fallback: str | None = None) -> str:
        """The detail when present, otherwise ``fallback`` or the class default."""
        return self.detail or fallback or self.default_detail


class ValidationError(BankdashError):
    default_detail = "Invalid request"


class AuthError(BankdashError):
    default_detail = "Authentication failed"
    # set when this rejection is what ended the session
    ended_session = False


class NoSessionError(AuthError):
    """Raised when an authenticated operation is attempted while logged out."""
    default_detail = "Not logged in"


class SessionExpiredError(AuthError):
    default_detail = "Session expired, please log in again"
    ended_session = True


class ServerError(BankdashError):
    default_detail = "Server error"

    def __init__(self, detail: str | None = None, status_code: int | None = None):
        super().__init__(detail)
        self.status_code = status_code

    @property
    def is_server_fault(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class NetworkError(BankdashError):
    default_detail = "Could not reach the server"


class CircuitOpenError(NetworkError):
    """Raised when the circuit breaker is open and blocking calls."""
    default_detail = "Server unavailable, try again shortly"
