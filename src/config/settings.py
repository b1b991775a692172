"""Application settings and configuration."""

import logging
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Campus Auth API"
    app_version: str = "0.1.0"

    # Environment-specific settings
    debug: bool = False
    environment: str = "development"  # development, staging, production, test

    # Database
    database_url: str = "sqlite+aiosqlite:///./campus_auth.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 3600
    db_command_timeout_seconds: float = 10.0
    db_echo: bool = False
    db_create_all: bool = False  # create missing tables at startup (no migrations)
    purge_expired_tokens_on_startup: bool = True

    # API
    api_prefix: str = "/api"

    # CORS (comma-separated origins; credentials are needed for the refresh cookie)
    cors_allow_origins: str = ""

    # Token signing
    secret_key: str
    refresh_secret_key: str | None = None
    jwt_algorithm: str = "HS256"

    # Token lifetimes
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 30
    device_token_expire_days: int = 365
    mfa_challenge_expire_minutes: int = 5
    remember_me_enabled: bool = True

    # Cookies
    cookie_secure: bool | None = None  # None: secure only in production
    cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    cookie_domain: str | None = None

    # Lockout policy
    lockout_threshold: int = 5
    lockout_base_minutes: int = 30
    lockout_max_minutes: int = 24 * 60

    # MFA
    mfa_issuer: str = "Campus Auth"
    mfa_recovery_code_count: int = 10
    mfa_valid_window: int = 1

    # Argon2 cost for password and recovery-code hashes
    password_hash_time_cost: int = 3
    password_hash_memory_cost: int = 65536

    # Rate limiting (per client IP, transport level)
    rate_limit_enabled: bool = True
    auth_rate_limit: str = "10/minute"

    # External identity (Google ID tokens)
    google_client_id: str | None = None
    google_jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs"
    identity_http_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production", "test"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("lockout_threshold", "lockout_base_minutes", "mfa_recovery_code_count")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @property
    def refresh_signing_key(self) -> str:
        return self.refresh_secret_key or self.secret_key

    @property
    def secure_cookies(self) -> bool:
        if self.cookie_secure is None:
            return self.environment == "production"
        return self.cookie_secure

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip().rstrip("/") for origin in self.cors_allow_origins.split(",") if origin.strip()]


settings = Settings()  # type: ignore[call-arg]
