"""Account management router (API endpoints)."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.dependencies import get_db_session
from src.features.auth.dependencies import get_current_account, require_role

from .models import ADMIN_ROLES, Account, parse_role
from .schemas import (
    AccountCreateRequest,
    AccountResponse,
    AccountStatusRequest,
    PasswordChangeRequest,
    PasswordResetRequest,
)
from .service import AccountService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/accounts", tags=["Account Management"])

require_admin = require_role(*ADMIN_ROLES)


@router.get("/me", response_model=AccountResponse)
async def get_current_account_info(current_account: Account = Depends(get_current_account)):
    """Get current account information."""
    return AccountResponse.model_validate(current_account)


@router.post("/me/change-password")
async def change_password(
    data: PasswordChangeRequest,
    current_account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db_session),
):
    """Change current account's password.

    Every existing session, including the current one, is ended; the client
    must log in again.
    """
    await AccountService.change_password(session, current_account, data.current_password, data.new_password)
    await session.commit()
    return {"message": "Password changed successfully. Please log in again."}


# Admin endpoints
@router.post("", response_model=AccountResponse, status_code=201)
async def create_account(
    data: AccountCreateRequest,
    current_account: Account = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Create an account with any role (admin only).

    The role may be given as a canonical value or a legacy label; unknown
    labels are rejected with 400.
    """
    role = parse_role(data.role)
    account = await AccountService.create_account(
        session,
        email=data.email,
        password=data.password,
        full_name=data.full_name,
        role=role,
        school_id=data.school_id,
    )
    await session.commit()
    logger.info(f"Account {account.id} created by admin {current_account.id}")
    return AccountResponse.model_validate(account)


@router.post("/{account_id}/reset-password")
async def reset_password(
    account_id: int,
    data: PasswordResetRequest,
    current_account: Account = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Set a new password for an account and end all of its sessions (admin only)."""
    await AccountService.reset_password(session, account_id, data.new_password)
    await session.commit()
    logger.info(f"Password of account {account_id} reset by admin {current_account.id}")
    return {"message": "Password reset successfully"}


@router.patch("/{account_id}/status", response_model=AccountResponse)
async def set_account_status(
    account_id: int,
    data: AccountStatusRequest,
    current_account: Account = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Activate or deactivate an account (admin only)."""
    account = await AccountService.set_status(session, current_account.id, account_id, data.status)
    await session.commit()
    return AccountResponse.model_validate(account)
