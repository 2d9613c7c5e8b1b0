"""
auth/errors.py -- Exception taxonomy for the auth layer.

Every exception carries the HTTP status, a machine-readable code and a
human-readable message. The auth layer raises these without knowing about
FastAPI; api/main.py registers one exception handler that turns any AuthError
into the standard {"error": {...}} envelope.

Clients key off the code, not the message. The 401 codes in particular let a
client decide between a silent refresh (token_expired) and a redirect to the
login page (missing_token, invalid_token, refresh_token_expired).
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, code: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = 400
    code = "missing_fields"
    message = "Missing required fields"


class NotFoundError(AuthError):
    status_code = 404
    code = "user_not_found"
    message = "User not found"


class AuthenticationError(AuthError):
    status_code = 401
    code = "invalid_token"
    message = "Invalid access token"


class AuthorizationError(AuthError):
    status_code = 403
    code = "not_admin"
    message = "Access denied, admin privileges required"


class ConflictError(AuthError):
    status_code = 409
    code = "email_taken"
    message = "User already exists. Please login instead."


class ServiceUnavailableError(AuthError):
    status_code = 503
    code = "service_unavailable"
    message = "Service temporarily unavailable."


class ServerError(AuthError):
    pass


class InvalidAssertion(AuthError):
    """The Google ID token failed verification or lacks required claims."""

    status_code = 400
    code = "invalid_token"
    message = "Invalid Google credential"


class TokenExpiredOrInvalid(AuthError):
    """rotate() found no unexpired ledger entry matching the presented token."""

    status_code = 401
    code = "refresh_token_expired"
    message = "Refresh token has expired"
