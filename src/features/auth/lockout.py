"""Per-account brute-force lockout with exponential backoff.

After ``threshold`` consecutive failures the account is locked for
``min(max_minutes, base_minutes * 2 ** (lockout_count - 1))`` minutes, where
``lockout_count`` is the number of lockouts since the last successful login.
Counters are only ever changed through single conditional UPDATE statements.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.config.settings import settings
from src.database.base import utc_now
from src.features.account.models import Account

logger = logging.getLogger(__name__)


class LockoutPolicy:
    """Records login outcomes and derives lock state."""

    def __init__(
        self,
        threshold: int | None = None,
        base_minutes: int | None = None,
        max_minutes: int | None = None,
    ):
        self.threshold = threshold or settings.lockout_threshold
        self.base_minutes = base_minutes or settings.lockout_base_minutes
        self.max_minutes = max_minutes or settings.lockout_max_minutes

    def lock_minutes(self, lockout_count: int) -> int:
        """Length of the ``lockout_count``-th consecutive lock window, in minutes."""
        if lockout_count < 1:
            return 0
        # Cap the exponent so huge counts never build huge integers
        exponent = min(lockout_count - 1, 32)
        return min(self.max_minutes, self.base_minutes * 2**exponent)

    @staticmethod
    def is_locked(account: Account, now: datetime | None = None) -> bool:
        return account.is_locked(now)

    async def record_failure(self, session: AsyncSession, account: Account, now: datetime | None = None) -> bool:
        """Count a failed attempt and lock the account at the threshold.

        A failure recorded while the account is already locked changes nothing.

        Args:
            session: Database session
            account: Account that failed authentication
            now: Current time (defaults to UTC now)

        Returns:
            True if this failure started a new lock window

        """
        now = now or utc_now()
        not_locked = or_(Account.lock_until.is_(None), Account.lock_until <= now)

        result = await session.execute(
            update(Account)
            .where(Account.id == account.id, not_locked)
            .values(login_attempts=Account.login_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False

        attempts, lockout_count = (
            await session.execute(
                select(Account.login_attempts, Account.lockout_count).where(Account.id == account.id)
            )
        ).one()

        locked = False
        if attempts >= self.threshold:
            lock_until = now + timedelta(minutes=self.lock_minutes(lockout_count + 1))
            result = await session.execute(
                update(Account)
                .where(Account.id == account.id, Account.login_attempts >= self.threshold)
                .values(lockout_count=Account.lockout_count + 1, lock_until=lock_until, login_attempts=0)
                .execution_options(synchronize_session=False)
            )
            locked = result.rowcount == 1
            if locked:
                logger.warning(
                    f"Account {account.id} locked until {lock_until.isoformat()} (lockout #{lockout_count + 1})"
                )

        await self._refresh_counters(session, account)
        return locked

    async def record_success(self, session: AsyncSession, account: Account) -> None:
        """Clear attempts, lock window and backoff after a successful login."""
        await session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(login_attempts=0, lock_until=None, lockout_count=0)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(account, "login_attempts", 0)
        set_committed_value(account, "lock_until", None)
        set_committed_value(account, "lockout_count", 0)

    @staticmethod
    async def _refresh_counters(session: AsyncSession, account: Account) -> None:
        row = (
            await session.execute(
                select(Account.login_attempts, Account.lockout_count, Account.lock_until).where(
                    Account.id == account.id
                )
            )
        ).one()
        set_committed_value(account, "login_attempts", row.login_attempts)
        set_committed_value(account, "lockout_count", row.lockout_count)
        set_committed_value(account, "lock_until", row.lock_until)
