"""Account service layer."""

import logging

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from src.features.auth.refresh_store import end_all_sessions

from .exceptions import AccountNotFound, CannotModifyOwnStatus, EmailAlreadyRegistered, IncorrectPassword
from .models import Account, AccountStatus, Role

logger = logging.getLogger(__name__)


class AccountService:
    """Service for account records."""

    @staticmethod
    async def get_by_id(session: AsyncSession, account_id: int, *, with_password: bool = False) -> Account | None:
        """Get account by ID.

        Args:
            session: Database session
            account_id: Account primary key
            with_password: Also load the hidden password hash

        Returns:
            Account, or None if it does not exist

        """
        stmt = select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
        if with_password:
            stmt = stmt.options(undefer(Account.hashed_password))
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(session: AsyncSession, email: str, *, with_password: bool = False) -> Account | None:
        """Get account by email (case-insensitive)."""
        stmt = (
            select(Account)
            .where(Account.email == Account.normalize_email(email))
            .execution_options(populate_existing=True)
        )
        if with_password:
            stmt = stmt.options(undefer(Account.hashed_password))
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create_account(
        session: AsyncSession,
        email: str,
        password: str,
        full_name: str,
        role: Role = Role.STUDENT,
        school_id: str | None = None,
    ) -> Account:
        """Create a new account.

        Args:
            session: Database session
            email: Email address (stored lower-cased)
            password: Plain text password, already strength-checked
            full_name: Display name
            role: Canonical role
            school_id: Optional school the account belongs to

        Returns:
            Created Account object (flushed, so ``id`` is set)

        Raises:
            EmailAlreadyRegistered: If the email is already in use

        """
        email = Account.normalize_email(email)
        if await AccountService.get_by_email(session, email) is not None:
            raise EmailAlreadyRegistered()

        # Argon2 is deliberately slow; keep it off the event loop
        hashed_password = await run_in_threadpool(Account.hash_password, password)

        account = Account(
            email=email,
            full_name=full_name,
            hashed_password=hashed_password,
            role=role,
            school_id=school_id,
            status=AccountStatus.ACTIVE,
        )
        session.add(account)
        try:
            await session.flush()
        except IntegrityError as err:
            # Lost a race with a concurrent registration of the same email
            raise EmailAlreadyRegistered() from err

        logger.info(f"Account created: {account.id} ({role.value})")
        return account

    @staticmethod
    async def change_password(
        session: AsyncSession, account: Account, current_password: str, new_password: str
    ) -> int:
        """Change an account's own password and end all of its sessions.

        Returns:
            The new session epoch

        Raises:
            IncorrectPassword: If current password is incorrect

        """
        stmt = select(Account.hashed_password).where(Account.id == account.id)
        hashed_password = (await session.execute(stmt)).scalar_one()

        if not await run_in_threadpool(Account.verify_hash, current_password, hashed_password):
            raise IncorrectPassword()

        account.hashed_password = await run_in_threadpool(Account.hash_password, new_password)
        await session.flush()

        logger.info(f"Password changed for account {account.id}")
        return await end_all_sessions(session, account)

    @staticmethod
    async def reset_password(session: AsyncSession, account_id: int, new_password: str) -> Account:
        """Administrator password reset; ends every session of the target account.

        Raises:
            AccountNotFound: If the account does not exist

        """
        account = await AccountService.get_by_id(session, account_id)
        if account is None:
            raise AccountNotFound()

        account.hashed_password = await run_in_threadpool(Account.hash_password, new_password)
        await session.flush()
        await end_all_sessions(session, account)

        logger.info(f"Password reset by administrator for account {account.id}")
        return account

    @staticmethod
    async def set_status(session: AsyncSession, actor_id: int, account_id: int, status: AccountStatus) -> Account:
        """Activate or deactivate an account.

        Deactivation also ends every session of the account.

        Raises:
            CannotModifyOwnStatus: If an administrator targets their own account
            AccountNotFound: If the account does not exist

        """
        if actor_id == account_id:
            raise CannotModifyOwnStatus()

        account = await AccountService.get_by_id(session, account_id)
        if account is None:
            raise AccountNotFound()

        if account.status != status:
            account.status = status
            await session.flush()
            if status == AccountStatus.INACTIVE:
                await end_all_sessions(session, account)
            logger.info(f"Account {account.id} status set to {status.value}")

        return account
