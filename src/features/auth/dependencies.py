"""Authentication dependencies for FastAPI."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.dependencies import get_db_session
from src.features.account.exceptions import AccountInactive, InsufficientRole
from src.features.account.models import Account, Role
from src.features.account.service import AccountService

from .exceptions import SessionInvalidated, TokenInvalid
from .tokens import Principal, principal_from_access_token

security = HTTPBearer(auto_error=False)


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or not credentials.credentials:
        raise TokenInvalid()
    return credentials.credentials


async def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Principal:
    """Verify the bearer access token and attach the principal to the request.

    This check is stateless: it does not touch the database, so a revoked
    epoch is only noticed by endpoints that load the account.

    Raises:
        TokenInvalid: If the token is missing, invalid or expired

    """
    principal = principal_from_access_token(_bearer_token(credentials))
    request.state.principal = principal
    return principal


async def get_current_account(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
) -> Account:
    """Load the account behind the access token.

    Raises:
        TokenInvalid: If the account no longer exists
        SessionInvalidated: If the token predates the account's current epoch
        AccountInactive: If the account has been deactivated

    """
    account = await AccountService.get_by_id(session, principal.account_id)
    if account is None:
        raise TokenInvalid()
    if account.token_version != principal.token_version:
        raise SessionInvalidated()
    if not account.is_active:
        raise AccountInactive()
    return account


async def get_mfa_challenge(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str:
    """Raw MFA challenge token from the Authorization header, verified by the service."""
    return _bearer_token(credentials)


def require_role(*required_roles: Role):
    """Dependency factory to require specific roles.

    Usage:
        # For single role
        Depends(require_role(Role.SCHOOL_ADMIN))

        # For multiple roles (OR logic - account needs ANY of these)
        Depends(require_role(*ADMIN_ROLES))
    """

    async def role_checker(current_account: Account = Depends(get_current_account)) -> Account:
        if current_account.role not in required_roles:
            raise InsufficientRole(sorted(role.value for role in required_roles))
        return current_account

    return role_checker


def client_info(request: Request) -> tuple[str | None, str | None]:
    """Requester's IP address and User-Agent for the refresh token audit trail."""
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")
