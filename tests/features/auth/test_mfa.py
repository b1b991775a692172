"""Tests for the MFA subsystem (TOTP and recovery codes)."""

import asyncio
import re
from datetime import datetime

import pyotp
import pytest
from sqlalchemy import func, select

from src.features.account.exceptions import IncorrectPassword
from src.features.account.models import Account
from src.features.auth.exceptions import MfaAlreadyEnabled, MfaInvalid, MfaNotEnabled, MfaNotPending
from src.features.auth.mfa import MfaService, generate_recovery_code, normalize_recovery_code
from src.features.auth.models import MfaRecoveryCode
from tests.conftest import DEFAULT_PASSWORD


async def _secret(session, account: Account) -> str | None:
    return (await session.execute(select(Account.mfa_secret).where(Account.id == account.id))).scalar_one()


async def _code_count(session, account: Account) -> int:
    stmt = select(func.count()).select_from(MfaRecoveryCode).where(MfaRecoveryCode.account_id == account.id)
    return (await session.execute(stmt)).scalar_one()


def _wrong_code(totp: pyotp.TOTP) -> str:
    now = datetime.now()
    valid = {totp.at(now, counter_offset) for counter_offset in (-1, 0, 1)}
    return next(c for c in ("000000", "111111", "222222", "333333") if c not in valid)


class TestRecoveryCodeFormat:
    def test_generated_code_shape(self):
        assert re.fullmatch(r"[A-Z0-9]{4}-[A-Z0-9]{4}", generate_recovery_code())

    def test_normalize(self):
        assert normalize_recovery_code(" ab12-cd34 ") == "AB12CD34"

    def test_service_generates_configured_count(self):
        codes = MfaService().generate_recovery_codes()
        assert len(codes) == 10
        assert len(set(codes)) == 10


class TestSetup:
    async def test_begin_setup_stores_secret_but_stays_disabled(self, session, make_account):
        account = await make_account(email="mfa@example.com")
        uri = await MfaService().begin_setup(session, account)
        await session.commit()

        assert uri.startswith("otpauth://totp/")
        assert "mfa%40example.com" in uri or "mfa@example.com" in uri
        assert await _secret(session, account) is not None
        assert account.mfa_enabled is False

    async def test_confirm_setup_enables_and_returns_ten_codes(self, session, make_account):
        account = await make_account()
        mfa = MfaService()
        await mfa.begin_setup(session, account)
        totp = pyotp.TOTP(await _secret(session, account))

        codes = await mfa.confirm_setup(session, account, totp.now())
        await session.commit()

        assert len(codes) == 10
        assert account.mfa_enabled is True
        assert await _code_count(session, account) == 10

        stored_hashes = (
            await session.execute(select(MfaRecoveryCode.code_hash).where(MfaRecoveryCode.account_id == account.id))
        ).scalars()
        assert not set(stored_hashes) & set(codes)

    async def test_confirm_setup_rejects_wrong_code(self, session, make_account):
        account = await make_account()
        mfa = MfaService()
        await mfa.begin_setup(session, account)
        totp = pyotp.TOTP(await _secret(session, account))

        with pytest.raises(MfaInvalid):
            await mfa.confirm_setup(session, account, _wrong_code(totp))
        assert account.mfa_enabled is False

    async def test_confirm_without_begin_is_rejected(self, session, make_account):
        account = await make_account()
        with pytest.raises(MfaNotPending):
            await MfaService().confirm_setup(session, account, "123456")

    async def test_begin_setup_when_enabled_is_rejected(self, session, make_account, enable_mfa):
        account = await make_account()
        await enable_mfa(account)
        with pytest.raises(MfaAlreadyEnabled):
            await MfaService().begin_setup(session, account)

    async def test_accepts_one_step_of_clock_drift(self, session, make_account):
        account = await make_account()
        mfa = MfaService()
        await mfa.begin_setup(session, account)
        totp = pyotp.TOTP(await _secret(session, account))

        previous_step = totp.at(datetime.now(), -1)
        codes = await mfa.confirm_setup(session, account, previous_step)
        assert len(codes) == 10


class TestChallengeVerify:
    async def test_accepts_current_totp(self, session, make_account, enable_mfa):
        account = await make_account()
        totp, _ = await enable_mfa(account)
        assert await MfaService().challenge_verify(session, account, totp.now()) is True

    async def test_rejects_wrong_totp(self, session, make_account, enable_mfa):
        account = await make_account()
        totp, _ = await enable_mfa(account)
        assert await MfaService().challenge_verify(session, account, _wrong_code(totp)) is False

    async def test_recovery_code_is_single_use(self, session, make_account, enable_mfa):
        account = await make_account()
        _, codes = await enable_mfa(account)
        mfa = MfaService()

        assert await mfa.challenge_verify(session, account, codes[3]) is True
        await session.commit()
        assert await mfa.challenge_verify(session, account, codes[3]) is False
        assert await _code_count(session, account) == 9

    async def test_recovery_code_is_normalized(self, session, make_account, enable_mfa):
        account = await make_account()
        _, codes = await enable_mfa(account)

        sloppy = f"  {codes[0].replace('-', '').lower()} "
        assert await MfaService().challenge_verify(session, account, sloppy) is True

    async def test_unknown_recovery_code_is_rejected(self, session, make_account, enable_mfa):
        account = await make_account()
        await enable_mfa(account)
        assert await MfaService().challenge_verify(session, account, "ZZZZ-ZZZZ") is False
        assert await _code_count(session, account) == 10

    async def test_disabled_account_never_verifies(self, session, make_account):
        account = await make_account()
        assert await MfaService().challenge_verify(session, account, "123456") is False

    async def test_racing_requests_consume_code_once(self, session, session_factory, make_account, enable_mfa):
        account = await make_account()
        _, codes = await enable_mfa(account)
        mfa = MfaService()

        async def attempt():
            async with session_factory() as racer:
                racer_account = await racer.get(Account, account.id)
                ok = await mfa.challenge_verify(racer, racer_account, codes[0])
                await racer.commit()
                return ok

        results = await asyncio.gather(attempt(), attempt())
        assert sorted(results) == [False, True]
        assert await _code_count(session, account) == 9


class TestDisable:
    async def test_disable_clears_everything(self, session, make_account, enable_mfa):
        account = await make_account()
        totp, _ = await enable_mfa(account)

        await MfaService().disable(session, account, totp.now())
        await session.commit()

        assert account.mfa_enabled is False
        assert await _secret(session, account) is None
        assert await _code_count(session, account) == 0

    async def test_disable_requires_valid_totp(self, session, make_account, enable_mfa):
        account = await make_account()
        totp, _ = await enable_mfa(account)

        with pytest.raises(MfaInvalid):
            await MfaService().disable(session, account, _wrong_code(totp))

    async def test_disable_when_not_enabled(self, session, make_account):
        account = await make_account()
        with pytest.raises(MfaNotEnabled):
            await MfaService().disable(session, account, "123456")


class TestRegenerateRecoveryCodes:
    async def test_old_codes_stop_working(self, session, make_account, enable_mfa):
        account = await make_account()
        totp, old_codes = await enable_mfa(account)
        mfa = MfaService()

        new_codes = await mfa.regenerate_recovery_codes(session, account, DEFAULT_PASSWORD, totp.now())
        await session.commit()

        assert len(new_codes) == 10
        assert not set(new_codes) & set(old_codes)
        for code in old_codes:
            assert await mfa.challenge_verify(session, account, code) is False
        assert await mfa.challenge_verify(session, account, new_codes[0]) is True

    async def test_requires_password(self, session, make_account, enable_mfa):
        account = await make_account()
        totp, _ = await enable_mfa(account)
        with pytest.raises(IncorrectPassword):
            await MfaService().regenerate_recovery_codes(session, account, "WrongPass123", totp.now())

    async def test_requires_totp(self, session, make_account, enable_mfa):
        account = await make_account()
        totp, _ = await enable_mfa(account)
        with pytest.raises(MfaInvalid):
            await MfaService().regenerate_recovery_codes(session, account, DEFAULT_PASSWORD, _wrong_code(totp))
