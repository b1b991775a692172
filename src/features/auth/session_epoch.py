"""Session epoch (``token_version``) invalidation.

Every access, refresh, device and MFA-challenge token embeds the account's epoch at the time
it was minted. Incrementing the epoch is the only way to invalidate all of an
account's outstanding sessions at once.
"""

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.features.account.models import Account

logger = logging.getLogger(__name__)


class SessionEpoch:
    """Reads and bumps the per-account session epoch."""

    @staticmethod
    async def bump(session: AsyncSession, account: Account) -> int:
        """Atomically increment the account's epoch.

        Args:
            session: Database session
            account: Account whose sessions are invalidated

        Returns:
            The new epoch value

        """
        await session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(token_version=Account.token_version + 1)
            .execution_options(synchronize_session=False)
        )
        new_version = (await session.execute(select(Account.token_version).where(Account.id == account.id))).scalar_one()
        set_committed_value(account, "token_version", new_version)

        logger.info(f"Session epoch bumped for account {account.id} to {new_version}")
        return new_version

    @staticmethod
    def matches(account: Account, claims: dict[str, Any]) -> bool:
        """Check a decoded token's ``token_version`` claim against the account."""
        return claims.get("token_version") == account.token_version
