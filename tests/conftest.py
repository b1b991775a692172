"""Test configuration and fixtures.

Each test gets its own database:
1. A fresh SQLite file (aiosqlite) under the test's tmp_path, or the database
   named by TEST_DATABASE_URL (schema dropped and recreated per test)
2. Requests run on their own sessions from the test session factory, with the
   same commit/rollback semantics as production
3. Race tests open several sessions from ``session_factory`` at once
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

from dotenv import load_dotenv

# Load test environment variables before any application module reads settings
test_env_path = Path(__file__).parent.parent / ".env.test"
load_dotenv(test_env_path, override=True)

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789abcdef0123456789abcdef")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-key-0123456789abcdef0123456789abcdef0123456789abcd")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("PASSWORD_HASH_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_MEMORY_COST", "1024")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")

import pyotp  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from src.database.base import Base  # noqa: E402
from src.database.client import engine_options  # noqa: E402
from src.database.dependencies import get_db_session  # noqa: E402
from src.features.account.models import Account, AccountStatus, Role  # noqa: E402
from src.features.auth.mfa import MfaService  # noqa: E402
from src.features.auth.tokens import issue_access_token  # noqa: E402
from src.main import app  # noqa: E402

DEFAULT_PASSWORD = "TestPass123"


# Database Setup - Function Scope (Fresh Schema Per Test)


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """Create a database engine with a fresh schema for one test."""
    test_db_url = os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    engine = create_async_engine(test_db_url, echo=False, **engine_options(test_db_url))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession]:
    """Session used directly by the test body."""
    async with session_factory() as async_session:
        yield async_session


# FastAPI Client & Dependency Overrides


@pytest_asyncio.fixture(autouse=True)
async def override_get_db_session(session_factory):
    """Give every request its own session on the test database."""

    async def _get_test_session():
        async with session_factory() as request_session:
            try:
                yield request_session
                await request_session.commit()
            except Exception:
                await request_session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _get_test_session
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    """Unauthenticated async HTTP test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Test Account Factories


@pytest_asyncio.fixture
async def make_account(session: AsyncSession):
    """Factory fixture to create committed test accounts.

    Usage:
        account = await make_account()                          # defaults
        admin = await make_account(role=Role.SCHOOL_ADMIN)      # admin
        inactive = await make_account(status=AccountStatus.INACTIVE)
    """
    counter = 0  # Counter for unique email generation

    async def _factory(
        email=None,
        full_name="Test User",
        password=DEFAULT_PASSWORD,
        role=Role.STUDENT,
        status=AccountStatus.ACTIVE,
        **kwargs,
    ) -> Account:
        nonlocal counter
        counter += 1

        if email is None:
            email = f"testuser{counter}@example.com"

        account = Account(
            email=Account.normalize_email(email),
            full_name=full_name,
            hashed_password=Account.hash_password(password),
            role=role,
            status=status,
            **kwargs,
        )
        session.add(account)
        await session.commit()
        return account

    yield _factory


@pytest_asyncio.fixture
async def enable_mfa(session: AsyncSession):
    """Put an account straight into the MFA-enabled state.

    Usage:
        totp, recovery_codes = await enable_mfa(account)
    """

    async def _enable(account: Account) -> tuple[pyotp.TOTP, list[str]]:
        mfa = MfaService()
        await mfa.begin_setup(session, account)
        secret = (await session.execute(select(Account.mfa_secret).where(Account.id == account.id))).scalar_one()
        totp = pyotp.TOTP(secret)
        codes = await mfa.confirm_setup(session, account, totp.now())
        await session.commit()
        return totp, codes

    return _enable


@pytest.fixture
def bearer():
    """Build an Authorization header with a freshly issued access token."""

    def _bearer(account: Account) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_access_token(account).token}"}

    return _bearer


@pytest_asyncio.fixture
async def auth_client(client: AsyncClient, make_account, bearer):
    """Authenticated client with a regular account.

    Returns:
        tuple: (client, account) - the HTTP client with a bearer header set, and the account

    """
    account = await make_account()
    client.headers.update(bearer(account))
    yield client, account


@pytest_asyncio.fixture
async def admin_client(client: AsyncClient, make_account, bearer):
    """Same as auth_client but the account has the school admin role."""
    account = await make_account(role=Role.SCHOOL_ADMIN)
    client.headers.update(bearer(account))
    yield client, account
