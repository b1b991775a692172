"""Authentication router (session, token and MFA endpoints)."""

import logging

from fastapi import APIRouter, Cookie, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.dependencies import get_db_session
from src.features.account.models import Account
from src.features.account.schemas import AccountResponse
from src.shared.rate_limit import limiter

from .cookies import DEVICE_COOKIE, REFRESH_COOKIE, clear_session_cookies, set_session_cookies
from .dependencies import client_info, get_current_account, get_mfa_challenge
from .identity import IdentityVerifier, get_identity_verifier
from .schemas import (
    GoogleLoginRequest,
    LoginRequest,
    MessageResponse,
    MfaChallengeResponse,
    MfaCodeRequest,
    MfaSetupResponse,
    RecoveryCodesResponse,
    RefreshResponse,
    RegenerateRecoveryCodesRequest,
    RegisterRequest,
    SessionResponse,
)
from .service import AuthService, SessionTokens, get_auth_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _session_response(response: Response, tokens: SessionTokens) -> SessionResponse:
    set_session_cookies(response, tokens.refresh_token, tokens.device_token)
    return SessionResponse(
        access_token=tokens.access_token.token,
        refresh_token=tokens.refresh_token.token,
        expires_in=settings.access_token_expire_minutes * 60,
        account=AccountResponse.model_validate(tokens.account),
    )


@router.post("/register", response_model=SessionResponse, status_code=201)
@limiter.limit(settings.auth_rate_limit)
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Create an account and start a session.

    Sets the `refreshToken` (and, with remember-me enabled, `deviceToken`) cookies.
    """
    ip_address, user_agent = client_info(request)
    tokens = await auth.register(
        session,
        email=data.email,
        password=data.password,
        full_name=data.full_name,
        school_id=data.school_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await session.commit()
    return _session_response(response, tokens)


@router.post("/login", response_model=SessionResponse | MfaChallengeResponse)
@limiter.limit(settings.auth_rate_limit)
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Login with email and password.

    Returns the full token set, or `{mfa_required, mfa_challenge}` when the
    account has MFA enabled. The challenge is then sent as a bearer token to
    `/auth/login/mfa-verify`.
    """
    ip_address, user_agent = client_info(request)
    outcome = await auth.login(session, data.email, data.password, ip_address, user_agent)
    await session.commit()

    if outcome.mfa_required:
        return MfaChallengeResponse(mfa_challenge=outcome.mfa_challenge.token)
    return _session_response(response, outcome.tokens)


@router.post("/login/mfa-verify", response_model=SessionResponse)
@limiter.limit(settings.auth_rate_limit)
async def login_mfa_verify(
    data: MfaCodeRequest,
    request: Request,
    response: Response,
    challenge: str = Depends(get_mfa_challenge),
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Complete an MFA login with a TOTP code or a recovery code."""
    ip_address, user_agent = client_info(request)
    tokens = await auth.verify_login_mfa(session, challenge, data.code, ip_address, user_agent)
    await session.commit()
    return _session_response(response, tokens)


@router.post("/google-login", response_model=SessionResponse)
@limiter.limit(settings.auth_rate_limit)
async def google_login(
    data: GoogleLoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
):
    """Login with a Google ID token. The email must belong to an existing account."""
    ip_address, user_agent = client_info(request)
    tokens = await auth.login_with_identity(session, verifier, data.credential, ip_address, user_agent)
    await session.commit()
    return _session_response(response, tokens)


@router.post("/refresh", response_model=RefreshResponse)
@limiter.limit(settings.auth_rate_limit)
async def refresh(
    request: Request,
    response: Response,
    refresh_token: str | None = Cookie(None, alias=REFRESH_COOKIE),
    device_token: str | None = Cookie(None, alias=DEVICE_COOKIE),
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Exchange the refresh cookie (or device cookie) for a new access token.

    The refresh cookie is rotated: the presented token is revoked and can
    never be used again.
    """
    ip_address, user_agent = client_info(request)
    tokens = await auth.refresh(session, refresh_token, device_token, ip_address, user_agent)
    await session.commit()

    set_session_cookies(response, tokens.refresh_token)
    return RefreshResponse(
        access_token=tokens.access_token.token,
        expires_in=settings.access_token_expire_minutes * 60,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    refresh_token: str | None = Cookie(None, alias=REFRESH_COOKIE),
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Revoke the refresh cookie and clear both session cookies."""
    revoked = await auth.logout(session, refresh_token)
    await session.commit()
    clear_session_cookies(response)

    if revoked:
        return MessageResponse(message="Successfully logged out")
    return MessageResponse(message="Token already revoked or not found")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    current_account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """End every session of the current account, on every device."""
    await auth.logout_everywhere(session, current_account)
    await session.commit()
    clear_session_cookies(response)
    return MessageResponse(message="Logged out from all devices")


# MFA management
@router.post("/mfa/setup", response_model=MfaSetupResponse)
async def mfa_setup(
    current_account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Start MFA enrollment. MFA stays disabled until `/auth/mfa/verify` succeeds."""
    uri = await auth.mfa.begin_setup(session, current_account)
    await session.commit()
    return MfaSetupResponse(provisioning_uri=uri)


@router.post("/mfa/verify", response_model=RecoveryCodesResponse)
@limiter.limit(settings.auth_rate_limit)
async def mfa_verify(
    data: MfaCodeRequest,
    request: Request,
    current_account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Confirm enrollment with a first TOTP code.

    Returns 10 recovery codes. They are shown only once.
    """
    codes = await auth.mfa.confirm_setup(session, current_account, data.code)
    await session.commit()
    return RecoveryCodesResponse(recovery_codes=codes)


@router.post("/mfa/disable", response_model=MessageResponse)
@limiter.limit(settings.auth_rate_limit)
async def mfa_disable(
    data: MfaCodeRequest,
    request: Request,
    current_account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Disable MFA. Requires a current TOTP code."""
    await auth.mfa.disable(session, current_account, data.code)
    await session.commit()
    return MessageResponse(message="MFA disabled")


@router.post("/mfa/recovery-codes", response_model=RecoveryCodesResponse)
@limiter.limit(settings.auth_rate_limit)
async def mfa_regenerate_recovery_codes(
    data: RegenerateRecoveryCodesRequest,
    request: Request,
    current_account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db_session),
    auth: AuthService = Depends(get_auth_service),
):
    """Replace all recovery codes. Requires the password and a current TOTP code."""
    codes = await auth.mfa.regenerate_recovery_codes(session, current_account, data.password, data.code)
    await session.commit()
    return RecoveryCodesResponse(recovery_codes=codes)
