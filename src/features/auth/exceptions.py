"""Authentication exceptions."""

from src.shared.errors import AuthenticationError, InputError, RateLimitedError

INVALID_TOKEN_DETAIL = "Invalid or expired token"


class InvalidCredentials(AuthenticationError):
    """Raised when the email is unknown or the password is wrong.

    Both cases share one message so that responses do not reveal which
    emails are registered.
    """

    def __init__(self):
        super().__init__(detail="Invalid credentials")


class TokenInvalid(AuthenticationError):
    """Raised when a token fails signature, format or kind checks."""

    def __init__(self, detail: str = INVALID_TOKEN_DETAIL):
        super().__init__(detail=detail)


class TokenExpired(TokenInvalid):
    """Raised when a token is past its expiry. Rendered like ``TokenInvalid``."""


class ReplayOrUnknown(TokenInvalid):
    """Raised when a refresh token is revoked, already rotated, expired or unknown."""


class MissingRefreshCredential(AuthenticationError):
    """Raised when a refresh request carries neither a refresh nor a device cookie."""

    def __init__(self):
        super().__init__(detail="Refresh token missing")


class SessionInvalidated(ReplayOrUnknown):
    """Raised when a token's session epoch no longer matches the account.

    A refresh token from an ended session is still a dead token, so callers
    handling ``ReplayOrUnknown`` see this too, with its own message.
    """

    def __init__(self):
        super().__init__(detail="Session has been invalidated. Please log in again.")


class MfaInvalid(AuthenticationError):
    """Raised when a TOTP or recovery code is rejected."""

    def __init__(self):
        super().__init__(detail="Invalid MFA code")


class AccountLocked(RateLimitedError):
    """Raised when an account is inside a lockout window."""

    def __init__(self):
        super().__init__(detail="Account temporarily locked. Try again later.")


class MfaAlreadyEnabled(InputError):
    def __init__(self):
        super().__init__(detail="MFA is already enabled")


class MfaNotPending(InputError):
    """Raised when confirming MFA setup without a pending secret."""

    def __init__(self):
        super().__init__(detail="MFA setup has not been started")


class MfaNotEnabled(InputError):
    def __init__(self):
        super().__init__(detail="MFA is not enabled")
