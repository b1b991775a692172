"""External identity verification for OAuth logins (Google ID tokens).

The verifier's only output is an email address the provider vouches for;
everything after that (account lookup, active check, token issuance) is the
login orchestrator's job.
"""

import logging
from datetime import datetime, timedelta
from typing import Protocol

import httpx
import jwt
from jwt import PyJWKSet
from jwt.exceptions import InvalidTokenError, PyJWKError, PyJWKSetError

from src.config.settings import settings
from src.database.base import utc_now
from src.shared.errors import InternalError

from .exceptions import TokenInvalid

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

# JWKS cache TTL
_JWKS_TTL = timedelta(hours=1)


class IdentityVerifier(Protocol):
    """Turns a provider credential into a verified email address."""

    async def verify(self, credential: str) -> str: ...


class GoogleIdentityVerifier:
    """Validates RS256 Google ID tokens against Google's published keys."""

    def __init__(self, client_id: str, jwks_url: str | None = None, timeout: float | None = None):
        self.client_id = client_id
        self.jwks_url = jwks_url or settings.google_jwks_url
        self.timeout = timeout or settings.identity_http_timeout_seconds
        self._jwks_cache: PyJWKSet | None = None
        self._jwks_fetched_at: datetime | None = None

    async def _get_jwks(self) -> PyJWKSet:
        """Fetch and cache the provider's signing keys."""
        now = utc_now()
        if self._jwks_cache is not None and self._jwks_fetched_at is not None and now - self._jwks_fetched_at < _JWKS_TTL:
            return self._jwks_cache

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.jwks_url)
                response.raise_for_status()
                self._jwks_cache = PyJWKSet.from_dict(response.json())
        except (httpx.HTTPError, ValueError, PyJWKSetError) as err:
            logger.error(f"Failed to fetch identity provider keys: {type(err).__name__}")
            raise InternalError("Identity provider unavailable") from err

        self._jwks_fetched_at = now
        return self._jwks_cache

    async def verify(self, credential: str) -> str:
        """Validate a Google ID token and return its verified, lower-cased email.

        Raises:
            TokenInvalid: If the token is malformed, forged, expired, for another
                audience, or carries no verified email
            InternalError: If Google's keys cannot be fetched

        """
        try:
            kid = jwt.get_unverified_header(credential).get("kid")
        except InvalidTokenError as err:
            raise TokenInvalid() from err

        jwks = await self._get_jwks()
        try:
            signing_key = jwks[kid]
            claims = jwt.decode(
                credential,
                signing_key,
                algorithms=["RS256"],
                audience=self.client_id,
                issuer=GOOGLE_ISSUERS,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except (KeyError, PyJWKError, InvalidTokenError) as err:
            logger.info(f"Rejected Google ID token: {type(err).__name__}")
            raise TokenInvalid() from err

        email = claims.get("email")
        if not email or claims.get("email_verified") is not True:
            raise TokenInvalid()
        return str(email).strip().lower()


_google_verifier: GoogleIdentityVerifier | None = None


def get_identity_verifier() -> IdentityVerifier:
    """FastAPI dependency returning the process-wide Google verifier."""
    global _google_verifier
    if not settings.google_client_id:
        raise InternalError("Google login is not configured")
    if _google_verifier is None:
        _google_verifier = GoogleIdentityVerifier(settings.google_client_id)
    return _google_verifier
