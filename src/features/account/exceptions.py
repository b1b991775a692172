"""Account-related exceptions."""

from src.shared.errors import AuthenticationError, AuthorizationError, ConflictError, InputError, NotFoundError


class AccountNotFound(NotFoundError):
    """Raised when an account is not found."""

    def __init__(self):
        super().__init__(detail="Account not found")


class EmailAlreadyRegistered(ConflictError):
    """Raised when trying to register an email that already exists."""

    def __init__(self):
        super().__init__(detail="Email already registered")


class AccountInactive(AuthorizationError):
    """Raised when a deactivated account tries to authenticate."""

    def __init__(self):
        super().__init__(detail="Account is deactivated. Please contact support.")


class IncorrectPassword(AuthenticationError):
    """Raised when the current password supplied for a sensitive change is wrong."""

    def __init__(self):
        super().__init__(detail="Current password is incorrect")


class UnknownRole(InputError):
    """Raised when a role label has no canonical mapping."""

    def __init__(self, label: str):
        super().__init__(detail=f"Unknown role: {label}")


class InsufficientRole(AuthorizationError):
    """Raised when the caller lacks a required role."""

    def __init__(self, required_roles: list[str]):
        roles_str = ", ".join(required_roles)
        super().__init__(detail=f"Account does not have required role(s): {roles_str}")


class CannotModifyOwnStatus(InputError):
    """Raised when an administrator tries to deactivate their own account."""

    def __init__(self):
        super().__init__(detail="Cannot change the status of your own account")
