"""Refresh token persistence and rotation."""

import logging

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.base import utc_now
from src.features.account.exceptions import AccountInactive
from src.features.account.models import Account

from .exceptions import ReplayOrUnknown, SessionInvalidated, TokenInvalid
from .models import RefreshToken
from .session_epoch import SessionEpoch
from .tokens import IssuedToken, TokenKind, account_id_from, hash_token, issue_refresh_token, verify

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _insert_if_absent(session: AsyncSession, values: dict):
    """Build an INSERT that silently skips rows whose ``token_hash`` already exists."""
    dialect = session.get_bind().dialect.name
    try:
        insert = _INSERT_BY_DIALECT[dialect]
    except KeyError:
        raise RuntimeError(f"Unsupported database dialect for refresh tokens: {dialect}") from None
    return insert(RefreshToken).values(**values).on_conflict_do_nothing(index_elements=["token_hash"])


async def _load_account(session: AsyncSession, account_id: int) -> Account | None:
    stmt = select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


class RefreshTokenStore:
    """Service for refresh token records.

    Plaintext tokens only ever exist in memory and in the client's cookie;
    the database holds their SHA-256 hashes.
    """

    @staticmethod
    async def issue(
        session: AsyncSession,
        account: Account,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedToken:
        """Mint a refresh token and persist its record.

        Args:
            session: Database session
            account: Account the token belongs to
            ip_address: Requester's IP address (optional)
            user_agent: Requester's User-Agent header (optional)

        Returns:
            The plaintext token and its expiry

        """
        issued = issue_refresh_token(account)
        result = await session.execute(
            _insert_if_absent(
                session,
                {
                    "account_id": account.id,
                    "token_hash": hash_token(issued.token),
                    "expires_at": issued.expires_at,
                    "revoked": False,
                    "created_at": utc_now(),
                    "ip_address": ip_address,
                    "user_agent": user_agent[:500] if user_agent else None,
                },
            )
        )
        if result.rowcount == 0:
            logger.warning(f"Refresh token record for account {account.id} already present, insert skipped")
        return issued

    @staticmethod
    async def rotate(
        session: AsyncSession,
        token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[Account, IssuedToken]:
        """Exchange a refresh token for a new one, revoking the old record.

        The old record is revoked by a single conditional UPDATE, so of two
        concurrent rotations of the same token exactly one succeeds.

        Raises:
            TokenInvalid: If the token fails verification
            ReplayOrUnknown: If no live record matches the token
            SessionInvalidated: If the token's epoch is stale, whether or not
                its record is still live
            AccountInactive: If the account has been deactivated

        """
        claims = verify(token, TokenKind.REFRESH)
        account_id = account_id_from(claims)
        now = utc_now()

        result = await session.execute(
            update(RefreshToken)
            .where(
                RefreshToken.token_hash == hash_token(token),
                RefreshToken.account_id == account_id,
                RefreshToken.revoked.is_(False),
                RefreshToken.expires_at > now,
            )
            .values(revoked=True, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        account = await _load_account(session, account_id)
        stale = account is not None and not SessionEpoch.matches(account, claims)

        if result.rowcount != 1:
            # Records revoked by an epoch bump report the bump, not a replay
            if stale:
                logger.info(f"Refresh token from an ended session for account {account_id}")
                raise SessionInvalidated()
            logger.warning(f"Refresh token replay or unknown token for account {account_id}")
            raise ReplayOrUnknown()

        if account is None:
            raise ReplayOrUnknown()
        if stale:
            logger.info(f"Stale session epoch on refresh for account {account_id}")
            raise SessionInvalidated()
        if not account.is_active:
            raise AccountInactive()

        issued = await RefreshTokenStore.issue(session, account, ip_address, user_agent)
        return account, issued

    @staticmethod
    async def redeem_device_token(
        session: AsyncSession,
        device_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[Account, IssuedToken]:
        """Re-establish a session from a remember-me device token.

        Raises:
            TokenInvalid: If the token fails verification or the account is gone
            SessionInvalidated: If the token's epoch is stale
            AccountInactive: If the account has been deactivated

        """
        claims = verify(device_token, TokenKind.DEVICE)
        account = await _load_account(session, account_id_from(claims))
        if account is None:
            raise TokenInvalid()
        if not SessionEpoch.matches(account, claims):
            raise SessionInvalidated()
        if not account.is_active:
            raise AccountInactive()

        issued = await RefreshTokenStore.issue(session, account, ip_address, user_agent)
        logger.info(f"Session restored from device token for account {account.id}")
        return account, issued

    @staticmethod
    async def revoke(session: AsyncSession, token: str) -> bool:
        """Revoke the record matching ``token`` (logout).

        Returns:
            True if a live record was revoked

        """
        result = await session.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == hash_token(token), RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @staticmethod
    async def revoke_all(session: AsyncSession, account_id: int) -> int:
        """Revoke every outstanding record for an account."""
        result = await session.execute(
            update(RefreshToken)
            .where(RefreshToken.account_id == account_id, RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def purge_expired(session: AsyncSession) -> int:
        """Delete records past their expiry."""
        result = await session.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at <= utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired refresh tokens")
        return result.rowcount


async def end_all_sessions(session: AsyncSession, account: Account) -> int:
    """Bump the session epoch and revoke all refresh records for ``account``.

    Returns:
        The new epoch value

    """
    new_version = await SessionEpoch.bump(session, account)
    revoked = await RefreshTokenStore.revoke_all(session, account.id)
    logger.info(f"Ended all sessions for account {account.id} ({revoked} refresh tokens revoked)")
    return new_version
