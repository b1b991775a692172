"""Authentication schemas (DTOs)."""

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.features.account.schemas import AccountResponse
from src.shared.validators.password import validate_password_strength


# Request schemas
class RegisterRequest(BaseModel):
    """Self-service registration request.

    Note: Uses email-validator library via Pydantic's EmailStr for RFC 5322 compliant email validation.
    """

    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    school_id: str | None = Field(None, max_length=64)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value):
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


class LoginRequest(BaseModel):
    """Email and password login request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class MfaCodeRequest(BaseModel):
    """TOTP code, or a recovery code where the endpoint accepts one."""

    code: str = Field(..., min_length=6, max_length=32)


class RegenerateRecoveryCodesRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class GoogleLoginRequest(BaseModel):
    """Google ID token obtained by the client."""

    credential: str = Field(..., min_length=1)


# Response schemas
class SessionResponse(BaseModel):
    """Token set returned when a session starts."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    account: AccountResponse


class MfaChallengeResponse(BaseModel):
    """Returned by login when a second factor is required."""

    mfa_required: bool = True
    mfa_challenge: str


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class MfaSetupResponse(BaseModel):
    provisioning_uri: str


class RecoveryCodesResponse(BaseModel):
    """Plaintext recovery codes, shown once."""

    recovery_codes: list[str]


class MessageResponse(BaseModel):
    message: str
