"""Multi-factor authentication: TOTP and single-use recovery codes.

Per-account state machine: Disabled -> Pending (secret stored, not yet
confirmed) -> Enabled.
"""

import logging
import re
import secrets
import string

import pyotp
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.config.settings import settings
from src.features.account.exceptions import IncorrectPassword
from src.features.account.models import Account, pwd_hasher

from .exceptions import MfaAlreadyEnabled, MfaInvalid, MfaNotEnabled, MfaNotPending
from .models import MfaRecoveryCode

logger = logging.getLogger(__name__)

TOTP_PATTERN = re.compile(r"\d{6}")
RECOVERY_CODE_ALPHABET = string.ascii_uppercase + string.digits
RECOVERY_CODE_GROUP = 4


def generate_recovery_code() -> str:
    """Random recovery code in ``XXXX-XXXX`` form."""
    chars = "".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(RECOVERY_CODE_GROUP * 2))
    return f"{chars[:RECOVERY_CODE_GROUP]}-{chars[RECOVERY_CODE_GROUP:]}"


def normalize_recovery_code(code: str) -> str:
    """Canonical form used for hashing: no whitespace, no dashes, upper case."""
    return "".join(code.split()).replace("-", "").upper()


def _hash_codes(codes: list[str]) -> list[str]:
    return [pwd_hasher.hash(normalize_recovery_code(code)) for code in codes]


class MfaService:
    """TOTP enrollment and verification plus recovery-code management."""

    def __init__(
        self,
        issuer: str | None = None,
        valid_window: int | None = None,
        recovery_code_count: int | None = None,
    ):
        self.issuer = issuer or settings.mfa_issuer
        self.valid_window = settings.mfa_valid_window if valid_window is None else valid_window
        self.recovery_code_count = recovery_code_count or settings.mfa_recovery_code_count

    def verify_totp(self, secret: str, code: str) -> bool:
        """Check a 6-digit code, accepting ``valid_window`` steps of clock drift."""
        if not TOTP_PATTERN.fullmatch(code):
            return False
        return pyotp.TOTP(secret).verify(code, valid_window=self.valid_window)

    def generate_recovery_codes(self) -> list[str]:
        return [generate_recovery_code() for _ in range(self.recovery_code_count)]

    @staticmethod
    async def _load_secret(session: AsyncSession, account: Account) -> str | None:
        stmt = select(Account.mfa_secret).where(Account.id == account.id)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _require_totp(self, session: AsyncSession, account: Account, code: str) -> None:
        secret = await self._load_secret(session, account)
        if secret is None or not self.verify_totp(secret, code.strip()):
            raise MfaInvalid()

    async def _replace_recovery_codes(self, session: AsyncSession, account: Account) -> list[str]:
        """Swap the account's whole recovery-code set for a fresh one."""
        codes = self.generate_recovery_codes()
        hashes = await run_in_threadpool(_hash_codes, codes)

        await session.execute(delete(MfaRecoveryCode).where(MfaRecoveryCode.account_id == account.id))
        session.add_all(
            MfaRecoveryCode(account_id=account.id, code_hash=code_hash, position=position)
            for position, code_hash in enumerate(hashes)
        )
        await session.flush()
        return codes

    async def begin_setup(self, session: AsyncSession, account: Account) -> str:
        """Generate and store a new secret, leaving MFA disabled until confirmed.

        Returns:
            ``otpauth://`` provisioning URI for authenticator apps

        Raises:
            MfaAlreadyEnabled: If MFA is already enabled

        """
        if account.mfa_enabled:
            raise MfaAlreadyEnabled()

        secret = pyotp.random_base32()
        await session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(mfa_secret=secret, mfa_enabled=False)
            .execution_options(synchronize_session=False)
        )

        logger.info(f"MFA setup started for account {account.id}")
        return pyotp.TOTP(secret).provisioning_uri(name=account.email, issuer_name=self.issuer)

    async def confirm_setup(self, session: AsyncSession, account: Account, code: str) -> list[str]:
        """Enable MFA after the first valid code.

        Returns:
            Plaintext recovery codes. They are only returned here; the
            database keeps their hashes.

        Raises:
            MfaAlreadyEnabled: If MFA is already enabled
            MfaNotPending: If setup was never started
            MfaInvalid: If the code is wrong

        """
        if account.mfa_enabled:
            raise MfaAlreadyEnabled()

        secret = await self._load_secret(session, account)
        if secret is None:
            raise MfaNotPending()
        if not self.verify_totp(secret, code.strip()):
            raise MfaInvalid()

        codes = await self._replace_recovery_codes(session, account)
        await session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(mfa_enabled=True)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(account, "mfa_enabled", True)

        logger.info(f"MFA enabled for account {account.id}")
        return codes

    async def challenge_verify(self, session: AsyncSession, account: Account, submission: str) -> bool:
        """Verify a login-time TOTP or recovery code.

        Six-digit numeric submissions are checked as TOTP. Anything else is
        treated as a recovery code; a matching code is consumed by deleting
        its row, and only the request whose DELETE removed the row succeeds.
        """
        if not account.mfa_enabled:
            return False

        submission = submission.strip()
        if TOTP_PATTERN.fullmatch(submission):
            secret = await self._load_secret(session, account)
            return secret is not None and self.verify_totp(secret, submission)

        normalized = normalize_recovery_code(submission)
        if not normalized:
            return False

        stmt = (
            select(MfaRecoveryCode.id, MfaRecoveryCode.code_hash)
            .where(MfaRecoveryCode.account_id == account.id)
            .order_by(MfaRecoveryCode.position)
        )
        rows = (await session.execute(stmt)).all()

        for code_id, code_hash in rows:
            if await run_in_threadpool(pwd_hasher.verify, normalized, code_hash):
                result = await session.execute(
                    delete(MfaRecoveryCode)
                    .where(MfaRecoveryCode.id == code_id)
                    .execution_options(synchronize_session=False)
                )
                consumed = result.rowcount == 1
                if consumed:
                    logger.info(f"Recovery code used for account {account.id} ({len(rows) - 1} remaining)")
                else:
                    logger.warning(f"Recovery code for account {account.id} was consumed concurrently")
                return consumed

        return False

    async def disable(self, session: AsyncSession, account: Account, code: str) -> None:
        """Turn MFA off, clearing the secret and all recovery codes.

        Raises:
            MfaNotEnabled: If MFA is not enabled
            MfaInvalid: If the TOTP code is wrong

        """
        if not account.mfa_enabled:
            raise MfaNotEnabled()
        await self._require_totp(session, account, code)

        await session.execute(delete(MfaRecoveryCode).where(MfaRecoveryCode.account_id == account.id))
        await session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(mfa_enabled=False, mfa_secret=None)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(account, "mfa_enabled", False)

        logger.info(f"MFA disabled for account {account.id}")

    async def regenerate_recovery_codes(
        self, session: AsyncSession, account: Account, password: str, code: str
    ) -> list[str]:
        """Replace every recovery code after re-checking password and TOTP.

        Raises:
            MfaNotEnabled: If MFA is not enabled
            IncorrectPassword: If the password is wrong
            MfaInvalid: If the TOTP code is wrong

        """
        if not account.mfa_enabled:
            raise MfaNotEnabled()

        stmt = select(Account.hashed_password).where(Account.id == account.id)
        hashed_password = (await session.execute(stmt)).scalar_one()
        if not await run_in_threadpool(pwd_hasher.verify, password, hashed_password):
            raise IncorrectPassword()
        await self._require_totp(session, account, code)

        codes = await self._replace_recovery_codes(session, account)
        logger.info(f"Recovery codes regenerated for account {account.id}")
        return codes
