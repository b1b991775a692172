"""Application error taxonomy.

Services raise these exceptions; the HTTP boundary maps each ``ErrorKind`` to
a status code (see ``src.shared.error_handlers``). Details are the only text
that reaches clients, so they must never contain secrets or internal state.
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Category of an application error."""

    INPUT = "input"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    INTERNAL = "internal"


class AppError(Exception):
    """Base application error."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_detail: str = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InputError(AppError):
    """Raised when a request is malformed or semantically invalid."""

    kind = ErrorKind.INPUT
    default_detail = "Invalid request"


class AuthenticationError(AppError):
    """Raised when a credential is missing, wrong, expired or replayed."""

    kind = ErrorKind.AUTHENTICATION
    default_detail = "Authentication failed"


class AuthorizationError(AppError):
    """Raised when an authenticated caller may not perform the operation."""

    kind = ErrorKind.AUTHORIZATION
    default_detail = "Insufficient permissions"


class NotFoundError(AppError):
    """Raised when a referenced record does not exist."""

    kind = ErrorKind.NOT_FOUND
    default_detail = "Resource not found"


class ConflictError(AppError):
    """Raised when a write collides with existing state."""

    kind = ErrorKind.CONFLICT
    default_detail = "Resource conflict"


class RateLimitedError(AppError):
    """Raised when the caller must back off before retrying."""

    kind = ErrorKind.RATE_LIMITED
    default_detail = "Too many requests. Try again later."


class InternalError(AppError):
    """Raised for persistence failures and other unexpected conditions."""

    kind = ErrorKind.INTERNAL
    default_detail = "Internal server error"
