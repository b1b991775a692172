"""Credential issuance and verification (JWT).

Claim layout shared with anything that decodes these tokens out of process:

    access   {sub, role, token_version, type="access"}
    refresh  {sub, role, token_version, jti, type="refresh"}
    device   {sub, token_version, type="device"}
    mfa      {sub, type="mfa-pending"}

Every token also carries ``iat`` and ``exp``.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Protocol

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from src.config.settings import settings
from src.database.base import utc_now
from src.features.account.models import Account, Role, parse_role
from src.shared.errors import InputError

from .exceptions import TokenExpired, TokenInvalid


class TokenKind(StrEnum):
    """Value of the ``type`` claim."""

    ACCESS = "access"
    REFRESH = "refresh"
    DEVICE = "device"
    MFA_PENDING = "mfa-pending"


@dataclass(frozen=True)
class IssuedToken:
    """A freshly minted token and its expiry."""

    token: str
    expires_at: datetime

    @property
    def max_age(self) -> int:
        """Seconds until expiry, for cookie ``max_age``."""
        return max(0, int((self.expires_at - utc_now()).total_seconds()))


@dataclass(frozen=True)
class Principal:
    """Minimal identity attached to a request after access-token verification."""

    account_id: int
    role: Role
    token_version: int


def _signing_key(kind: TokenKind) -> str:
    if kind is TokenKind.REFRESH:
        return settings.refresh_signing_key
    return settings.secret_key


def _encode(claims: dict[str, Any], kind: TokenKind, lifetime: timedelta) -> IssuedToken:
    now = utc_now()
    expires_at = now + lifetime
    payload = {**claims, "type": kind.value, "iat": now, "exp": expires_at}
    token = jwt.encode(payload, _signing_key(kind), algorithm=settings.jwt_algorithm)
    return IssuedToken(token=token, expires_at=expires_at)


def issue_access_token(account: Account) -> IssuedToken:
    """Create a short-lived access token."""
    claims = {"sub": str(account.id), "role": account.role.value, "token_version": account.token_version}
    return _encode(claims, TokenKind.ACCESS, timedelta(minutes=settings.access_token_expire_minutes))


def issue_refresh_token(account: Account) -> IssuedToken:
    """Create a refresh token.

    The random ``jti`` keeps two tokens minted in the same second distinct,
    which the refresh-token store relies on since it indexes by hash.
    """
    claims = {
        "sub": str(account.id),
        "role": account.role.value,
        "token_version": account.token_version,
        "jti": secrets.token_hex(16),
    }
    return _encode(claims, TokenKind.REFRESH, timedelta(days=settings.refresh_token_expire_days))


def issue_device_token(account: Account) -> IssuedToken:
    """Create a long-lived "remember me" token that can only re-establish a session."""
    claims = {"sub": str(account.id), "token_version": account.token_version}
    return _encode(claims, TokenKind.DEVICE, timedelta(days=settings.device_token_expire_days))


def issue_mfa_challenge(account: Account) -> IssuedToken:
    """Create the token proving the password step passed while MFA is pending."""
    return _encode(
        {"sub": str(account.id), "token_version": account.token_version},
        TokenKind.MFA_PENDING,
        timedelta(minutes=settings.mfa_challenge_expire_minutes),
    )


def verify(token: str, expected_kind: TokenKind) -> dict[str, Any]:
    """Decode a token, checking signature, expiry and kind.

    Raises:
        TokenExpired: If the token is past its ``exp``
        TokenInvalid: For any other problem (signature, format, kind, claims)

    """
    try:
        payload = jwt.decode(
            token,
            _signing_key(expected_kind),
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "iat", "sub", "type"]},
        )
    except ExpiredSignatureError as err:
        raise TokenExpired() from err
    except InvalidTokenError as err:
        raise TokenInvalid() from err

    if payload.get("type") != expected_kind.value:
        raise TokenInvalid()

    try:
        int(payload["sub"])
    except (TypeError, ValueError) as err:
        raise TokenInvalid() from err

    if not isinstance(payload.get("token_version"), int):
        raise TokenInvalid()

    return payload


def account_id_from(claims: dict[str, Any]) -> int:
    return int(claims["sub"])


def principal_from_access_token(token: str) -> Principal:
    """Verify an access token and build the request principal from its claims."""
    claims = verify(token, TokenKind.ACCESS)
    try:
        role = parse_role(claims.get("role", ""))
    except InputError as err:
        raise TokenInvalid() from err
    return Principal(account_id=account_id_from(claims), role=role, token_version=claims["token_version"])


def hash_token(token: str) -> str:
    """One-way hash used to index refresh tokens (SHA-256 hex)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class DeviceTokenIssuer(Protocol):
    """Strategy for minting remember-me device tokens."""

    def issue(self, account: Account) -> IssuedToken | None: ...


class JWTDeviceTokenIssuer:
    """Production strategy: signed device tokens."""

    def issue(self, account: Account) -> IssuedToken | None:
        return issue_device_token(account)


class NullDeviceTokenIssuer:
    """Strategy used when remember-me is disabled: never issues a device token."""

    def issue(self, account: Account) -> IssuedToken | None:
        return None


def build_device_token_issuer(enabled: bool) -> DeviceTokenIssuer:
    """Select the device-token strategy once, at construction time."""
    return JWTDeviceTokenIssuer() if enabled else NullDeviceTokenIssuer()
