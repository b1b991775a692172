"""Authentication service layer (login orchestration)."""

import logging
from dataclasses import dataclass
from functools import cache

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.base import utc_now
from src.features.account.exceptions import AccountInactive
from src.features.account.models import Account, Role, pwd_hasher
from src.features.account.service import AccountService

from .exceptions import (
    AccountLocked,
    InvalidCredentials,
    MfaInvalid,
    MissingRefreshCredential,
    SessionInvalidated,
    TokenInvalid,
)
from .identity import IdentityVerifier
from .lockout import LockoutPolicy
from .mfa import MfaService
from .notifier import NullSessionNotifier, SessionEventNotifier
from .refresh_store import RefreshTokenStore, end_all_sessions
from .session_epoch import SessionEpoch
from .tokens import (
    DeviceTokenIssuer,
    IssuedToken,
    TokenKind,
    account_id_from,
    build_device_token_issuer,
    issue_access_token,
    issue_mfa_challenge,
    verify,
)

logger = logging.getLogger(__name__)


@cache
def _dummy_hash() -> str:
    return pwd_hasher.hash("unknown-account-timing-equalizer")


@dataclass(frozen=True)
class SessionTokens:
    """Credentials handed out when a session starts or is refreshed."""

    account: Account
    access_token: IssuedToken
    refresh_token: IssuedToken
    device_token: IssuedToken | None = None


@dataclass(frozen=True)
class LoginOutcome:
    """Result of the password step: either a full session or an MFA challenge."""

    tokens: SessionTokens | None = None
    mfa_challenge: IssuedToken | None = None

    @property
    def mfa_required(self) -> bool:
        return self.mfa_challenge is not None


class AuthService:
    """Orchestrates password, MFA, OAuth and refresh flows.

    Collaborators are injected so tests and deployments can swap them; the
    defaults are built from settings.
    """

    def __init__(
        self,
        lockout: LockoutPolicy | None = None,
        mfa: MfaService | None = None,
        device_issuer: DeviceTokenIssuer | None = None,
        notifier: SessionEventNotifier | None = None,
    ):
        self.lockout = lockout or LockoutPolicy()
        self.mfa = mfa or MfaService()
        self.device_issuer = device_issuer or build_device_token_issuer(settings.remember_me_enabled)
        self.notifier = notifier or NullSessionNotifier()

    async def _start_session(
        self,
        session: AsyncSession,
        account: Account,
        ip_address: str | None,
        user_agent: str | None,
    ) -> SessionTokens:
        refresh_token = await RefreshTokenStore.issue(session, account, ip_address, user_agent)
        account.last_login_at = utc_now()
        await session.flush()

        tokens = SessionTokens(
            account=account,
            access_token=issue_access_token(account),
            refresh_token=refresh_token,
            device_token=self.device_issuer.issue(account),
        )
        await self.notifier.session_started(account.id)
        return tokens

    async def register(
        self,
        session: AsyncSession,
        email: str,
        password: str,
        full_name: str,
        school_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionTokens:
        """Create a student account and sign it in.

        Raises:
            EmailAlreadyRegistered: If the email is already in use

        """
        account = await AccountService.create_account(
            session, email=email, password=password, full_name=full_name, role=Role.STUDENT, school_id=school_id
        )
        return await self._start_session(session, account, ip_address, user_agent)

    async def login(
        self,
        session: AsyncSession,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginOutcome:
        """Authenticate with email and password.

        Failed attempts are committed before the error propagates so that the
        lockout counters survive the request's rollback.

        Args:
            session: Database session
            email: Email address
            password: Plain text password
            ip_address: Requester's IP address (optional)
            user_agent: Requester's User-Agent header (optional)

        Returns:
            LoginOutcome holding either session tokens or an MFA challenge

        Raises:
            InvalidCredentials: Unknown email or wrong password
            AccountLocked: Account is inside a lockout window
            AccountInactive: Account has been deactivated

        """
        account = await AccountService.get_by_email(session, email, with_password=True)

        if account is None:
            # Same hashing cost as a real check so timing does not reveal unknown emails
            await run_in_threadpool(pwd_hasher.verify, password, _dummy_hash())
            raise InvalidCredentials()

        if self.lockout.is_locked(account):
            logger.warning(f"Login attempt for locked account {account.id}")
            raise AccountLocked()

        if not await run_in_threadpool(account.verify_password, password):
            await self.lockout.record_failure(session, account)
            await session.commit()
            raise InvalidCredentials()

        if not account.is_active:
            raise AccountInactive()

        if account.mfa_enabled:
            logger.info(f"MFA required for account {account.id}")
            return LoginOutcome(mfa_challenge=issue_mfa_challenge(account))

        await self.lockout.record_success(session, account)
        tokens = await self._start_session(session, account, ip_address, user_agent)
        logger.info(f"Account logged in: {account.id}")
        return LoginOutcome(tokens=tokens)

    async def verify_login_mfa(
        self,
        session: AsyncSession,
        challenge: str,
        code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionTokens:
        """Complete an MFA-pending login with a TOTP or recovery code.

        Raises:
            TokenInvalid: Challenge is invalid, expired or for an unknown account
            SessionInvalidated: Sessions were ended after the challenge was issued
            AccountLocked: Account is inside a lockout window
            AccountInactive: Account has been deactivated
            MfaInvalid: Code rejected (counts as a failed login attempt)

        """
        claims = verify(challenge, TokenKind.MFA_PENDING)
        account = await AccountService.get_by_id(session, account_id_from(claims))
        if account is None or not account.mfa_enabled:
            raise TokenInvalid()
        if not SessionEpoch.matches(account, claims):
            logger.info(f"MFA challenge from an ended session for account {account.id}")
            raise SessionInvalidated()
        if not account.is_active:
            raise AccountInactive()
        if self.lockout.is_locked(account):
            raise AccountLocked()

        if not await self.mfa.challenge_verify(session, account, code):
            await self.lockout.record_failure(session, account)
            await session.commit()
            logger.warning(f"Invalid MFA code for account {account.id}")
            raise MfaInvalid()

        await self.lockout.record_success(session, account)
        tokens = await self._start_session(session, account, ip_address, user_agent)
        logger.info(f"Account logged in with MFA: {account.id}")
        return tokens

    async def login_with_identity(
        self,
        session: AsyncSession,
        verifier: IdentityVerifier,
        credential: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionTokens:
        """Sign in with an external provider credential.

        The provider already authenticated the user, so password and lockout
        checks are skipped. The active check is not.

        Raises:
            TokenInvalid: Provider credential rejected
            InvalidCredentials: No account for the verified email
            AccountInactive: Account has been deactivated

        """
        email = await verifier.verify(credential)
        account = await AccountService.get_by_email(session, email)
        if account is None:
            raise InvalidCredentials()
        if not account.is_active:
            raise AccountInactive()

        tokens = await self._start_session(session, account, ip_address, user_agent)
        logger.info(f"Account logged in with external identity: {account.id}")
        return tokens

    async def refresh(
        self,
        session: AsyncSession,
        refresh_token: str | None,
        device_token: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionTokens:
        """Rotate the refresh token, or fall back to the device token when none is sent.

        Raises:
            MissingRefreshCredential: Neither cookie was sent
            TokenInvalid: Token rejected (includes replay of a rotated token)
            SessionInvalidated: Token predates the account's current epoch
            AccountInactive: Account has been deactivated

        """
        if refresh_token:
            account, new_refresh = await RefreshTokenStore.rotate(session, refresh_token, ip_address, user_agent)
        elif device_token:
            account, new_refresh = await RefreshTokenStore.redeem_device_token(
                session, device_token, ip_address, user_agent
            )
        else:
            raise MissingRefreshCredential()

        return SessionTokens(account=account, access_token=issue_access_token(account), refresh_token=new_refresh)

    async def logout(self, session: AsyncSession, refresh_token: str | None) -> bool:
        """Revoke the presented refresh token.

        Returns:
            True if a live record was revoked

        """
        if not refresh_token:
            return False

        revoked = await RefreshTokenStore.revoke(session, refresh_token)
        if revoked:
            try:
                account_id = account_id_from(verify(refresh_token, TokenKind.REFRESH))
            except TokenInvalid:
                account_id = None
            if account_id is not None:
                await self.notifier.session_ended(account_id)
                logger.info(f"Account logged out: {account_id}")
        return revoked

    async def logout_everywhere(self, session: AsyncSession, account: Account) -> int:
        """End every session of ``account`` by bumping its epoch.

        Returns:
            The new session epoch

        """
        new_version = await end_all_sessions(session, account)
        await self.notifier.session_ended(account.id)
        return new_version


_auth_service: AuthService | None = None


def get_auth_service() -> AuthService:
    """FastAPI dependency returning the process-wide AuthService."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
