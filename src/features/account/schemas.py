"""Account schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.shared.validators.password import validate_password_strength

from .models import AccountStatus, Role


# Request schemas
class AccountCreateRequest(BaseModel):
    """Administrator account creation.

    ``role`` accepts canonical values (``school_admin``) and legacy labels
    (``"School Admin"``); it is resolved through the role table by the router.
    """

    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    role: str = Field(..., min_length=1, max_length=50)
    school_id: str | None = Field(None, max_length=64)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value):
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


class PasswordChangeRequest(BaseModel):
    """Password change request."""

    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    confirm_new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value):
        """Validate password strength using shared validator."""
        return validate_password_strength(value)

    @field_validator("confirm_new_password")
    @classmethod
    def passwords_match(cls, value, info):
        """Validate that new_password and confirm_new_password match."""
        if "new_password" in info.data and value != info.data["new_password"]:
            raise ValueError("New passwords do not match")
        return value


class PasswordResetRequest(BaseModel):
    """Administrator password reset."""

    new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value):
        return validate_password_strength(value)


class AccountStatusRequest(BaseModel):
    status: AccountStatus


# Response schemas
class AccountResponse(BaseModel):
    """Account response."""

    id: int
    email: str
    full_name: str
    role: Role
    status: AccountStatus
    school_id: str | None = None
    mfa_enabled: bool
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}
