"""
auth/errors.py -- Error taxonomy for the authentication services.

Every failure a service can report is an AuthError subclass carrying a stable
machine-readable code, the HTTP status the API layer should use, and a
human-readable message. The API maps these onto the ErrorResponse envelope in
one exception handler; services never build HTTP responses themselves.

Credential failures are deliberately generic ("Invalid credentials") so the
message never reveals whether an account exists.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for expected, client-visible service failures."""

    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "The request could not be processed."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Email already in use."


class InvalidOrExpiredError(AuthError):
    status_code = 400
    code = "invalid_or_expired"
    default_message = "Invalid or expired token."


class UnauthorizedError(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Invalid credentials."


class ForbiddenError(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "This action is not allowed."


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class WeakPasswordError(AuthError):
    status_code = 422
    code = "weak_password"
    default_message = "Password is too short."


class InvalidInputError(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid input."


class TooSoonError(AuthError):
    """Raised when a freshly rotated refresh token is presented again too quickly.

    retry_after is the number of seconds the client should wait; the API turns
    it into a Retry-After header.
    """

    status_code = 429
    code = "too_soon"
    default_message = "Refresh requested too soon."

    def __init__(self, message: str | None = None, *, retry_after: int = 1, detail: str | None = None) -> None:
        super().__init__(message, detail=detail)
        self.retry_after = max(retry_after, 1)


class InternalError(AuthError):
    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."
