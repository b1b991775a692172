"""Account domain models."""

from datetime import datetime
from enum import StrEnum

from pwdlib import PasswordHash
from pwdlib.hashers.argon2 import Argon2Hasher
from sqlalchemy import Boolean, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.config.settings import settings
from src.database.base import Base, TimestampMixin, UTCDateTime, utc_now

from .exceptions import UnknownRole


class Role(StrEnum):
    """Canonical account roles."""

    STUDENT = "student"
    PARENT = "parent"
    TEACHER = "teacher"
    PRINCIPAL = "principal"
    SCHOOL_ADMIN = "school_admin"
    GLOBAL_SUPER_ADMIN = "global_super_admin"
    MAIN_SUPER_ADMIN = "main_super_admin"


ADMIN_ROLES = frozenset({Role.SCHOOL_ADMIN, Role.GLOBAL_SUPER_ADMIN, Role.MAIN_SUPER_ADMIN})

# Every label accepted from clients or older records, keyed by its normalized
# form (lower case, single spaces). Anything missing here is rejected.
ROLE_LABELS: dict[str, Role] = {
    "student": Role.STUDENT,
    "parent": Role.PARENT,
    "teacher": Role.TEACHER,
    "principal": Role.PRINCIPAL,
    "school admin": Role.SCHOOL_ADMIN,
    "school_admin": Role.SCHOOL_ADMIN,
    "super admin": Role.SCHOOL_ADMIN,
    "super_admin": Role.SCHOOL_ADMIN,
    "admin": Role.SCHOOL_ADMIN,
    "global super admin": Role.GLOBAL_SUPER_ADMIN,
    "global_super_admin": Role.GLOBAL_SUPER_ADMIN,
    "main super admin": Role.MAIN_SUPER_ADMIN,
    "main_super_admin": Role.MAIN_SUPER_ADMIN,
}


def parse_role(label: str | Role) -> Role:
    """Map a canonical role value or legacy label to a ``Role``.

    Raises:
        UnknownRole: If the label has no mapping

    """
    if isinstance(label, Role):
        return label
    normalized = " ".join(str(label).split()).lower()
    try:
        return ROLE_LABELS[normalized]
    except KeyError:
        raise UnknownRole(str(label)) from None


class AccountStatus(StrEnum):
    """Account status. Lockout is tracked separately through ``lock_until``."""

    ACTIVE = "active"
    INACTIVE = "inactive"


pwd_hasher = PasswordHash(
    (Argon2Hasher(time_cost=settings.password_hash_time_cost, memory_cost=settings.password_hash_memory_cost),)
)


class Account(Base, TimestampMixin):
    """Account model holding identity and security state.

    ``hashed_password`` and ``mfa_secret`` are hidden fields: they are not
    loaded by default and raise if touched without an explicit
    ``undefer(...)`` load option.
    """

    __tablename__ = "accounts"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity (email is stored lower-cased)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    school_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # Authentication
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False, deferred=True, deferred_raiseload=True)

    # Authorization
    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=Role.STUDENT,
    )

    # Status
    status: Mapped[AccountStatus] = mapped_column(
        Enum(AccountStatus, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccountStatus.ACTIVE,
        index=True,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Lockout state (mutated only by LockoutPolicy)
    login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lock_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    lockout_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Session epoch (mutated only by SessionEpoch)
    token_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # MFA state (mutated only by MfaService)
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mfa_secret: Mapped[str | None] = mapped_column(String(64), nullable=True, deferred=True, deferred_raiseload=True)

    @property
    def is_active(self) -> bool:
        """Computed property: account is active if status is ACTIVE."""
        return self.status == AccountStatus.ACTIVE

    def is_locked(self, now: datetime | None = None) -> bool:
        """Check if the account is inside a lockout window."""
        if self.lock_until is None:
            return False
        return self.lock_until > (now or utc_now())

    def verify_password(self, plain_password: str) -> bool:
        """Verify a password against the hash using Argon2.

        Requires ``hashed_password`` to have been loaded explicitly.
        """
        return Account.verify_hash(plain_password, self.hashed_password)

    @staticmethod
    def verify_hash(plain_password: str, hashed_password: str) -> bool:
        return pwd_hasher.verify(plain_password, hashed_password)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using Argon2.

        Salt is automatically generated and embedded in the returned hash.
        """
        return pwd_hasher.hash(password)

    @staticmethod
    def normalize_email(email: str) -> str:
        return email.strip().lower()
