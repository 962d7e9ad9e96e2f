"""
Tests for AccountCreditLedger.

Tests the daily window reset, the daily-then-bonus draw order, admin
top-ups, account creation and storage failure handling.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from app.db.models import Account
from app.exceptions import AccountNotFoundError, InsufficientCreditsError, StorageError
from app.models.api import CreditSource
from app.models.domain import AccountCreditInfo
from app.services.credit_ledger import (
    AccountCreditLedger,
    _get_next_reset_time,
    _utc_now,
    available_balance,
    plan_deduction,
    should_reset_daily_window,
)
from conftest import create_mock_account, make_result


def _db_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection lost"))


class TestDailyWindow:
    """Tests for window expiry helpers."""

    def test_should_reset_when_no_reset_at(self):
        assert should_reset_daily_window(None) is True

    def test_should_reset_when_past_reset_time(self):
        assert should_reset_daily_window(_utc_now() - timedelta(hours=1)) is True

    def test_should_reset_exactly_at_reset_time(self):
        now = _utc_now()
        assert should_reset_daily_window(now, now) is True

    def test_should_not_reset_before_reset_time(self):
        assert should_reset_daily_window(_utc_now() + timedelta(hours=1)) is False

    def test_next_reset_is_one_window_later(self):
        now = _utc_now()
        assert _get_next_reset_time(now, 24) == now + timedelta(hours=24)


class TestPlanDeduction:
    """Tests for the pure draw-order computation."""

    def test_daily_covers_cost(self):
        plan = plan_deduction(daily_credits_used=0, bonus_credits=10, cost=2, daily_allowance=3)

        assert plan.daily_credits_used == 2
        assert plan.bonus_credits == 10
        assert plan.source == CreditSource.DAILY

    def test_shortfall_drawn_from_bonus(self):
        plan = plan_deduction(daily_credits_used=2, bonus_credits=5, cost=2, daily_allowance=3)

        assert plan.daily_credits_used == 3
        assert plan.bonus_credits == 4
        assert plan.daily_drawn == 1
        assert plan.bonus_drawn == 1
        assert plan.source == CreditSource.MIXED

    def test_exhausted_daily_draws_bonus_only(self):
        plan = plan_deduction(daily_credits_used=3, bonus_credits=1, cost=1, daily_allowance=3)

        assert plan.daily_credits_used == 3
        assert plan.bonus_credits == 0
        assert plan.source == CreditSource.MIXED

    def test_insufficient_raises(self):
        with pytest.raises(InsufficientCreditsError) as exc_info:
            plan_deduction(daily_credits_used=3, bonus_credits=1, cost=2, daily_allowance=3)

        assert exc_info.value.balance == 1
        assert exc_info.value.required == 2

    def test_available_balance(self):
        info = AccountCreditInfo(
            bonus_credits=10, daily_credits_used=1, daily_reset_at=None, signup_bonus_given=True
        )
        assert available_balance(info, 3) == 12


class TestReadInfo:
    """Tests for read_info()."""

    async def test_missing_account_reads_defaults(self, db_session: AsyncMock):
        ledger = AccountCreditLedger(db_session)

        info = await ledger.read_info("missing")

        assert info == AccountCreditInfo.fresh()
        assert ledger.available_balance(info) == 3

    async def test_existing_account(self, db_session: AsyncMock, free_account: MagicMock):
        db_session.execute = AsyncMock(return_value=make_result(scalar=free_account))
        ledger = AccountCreditLedger(db_session)

        info = await ledger.read_info("user-123")

        assert info.bonus_credits == 5
        assert info.daily_credits_used == 1
        assert ledger.available_balance(info) == 7

    async def test_storage_failure(self, db_session: AsyncMock):
        db_session.execute = AsyncMock(side_effect=_db_error())
        ledger = AccountCreditLedger(db_session)

        with pytest.raises(StorageError):
            await ledger.read_info("user-123")


class TestResetWindow:
    """Tests for reset_window_if_expired()."""

    async def test_expired_window_is_reset(self, db_session: AsyncMock):
        account = create_mock_account(
            daily_credits_used=3, daily_reset_at=_utc_now() - timedelta(minutes=1)
        )
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = account
            assert await ledger.reset_window_if_expired("user-123") is True

        assert account.daily_credits_used == 0
        assert account.daily_reset_at > _utc_now() + timedelta(hours=23)
        db_session.commit.assert_awaited_once()

    async def test_open_window_untouched(self, db_session: AsyncMock):
        reset_at = _utc_now() + timedelta(hours=5)
        account = create_mock_account(daily_credits_used=2, daily_reset_at=reset_at)
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = account
            assert await ledger.reset_window_if_expired("user-123") is False

        assert account.daily_credits_used == 2
        assert account.daily_reset_at == reset_at
        db_session.commit.assert_not_awaited()

    async def test_missing_account(self, db_session: AsyncMock):
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = None
            assert await ledger.reset_window_if_expired("missing") is False


class TestDeduct:
    """Tests for deduct()."""

    async def test_draws_daily_then_bonus(self, db_session: AsyncMock):
        account = create_mock_account(
            bonus_credits=5, daily_credits_used=2, daily_reset_at=_utc_now() + timedelta(hours=3)
        )
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = account
            result = await ledger.deduct("user-123", 2)

        assert result.source == CreditSource.MIXED
        assert result.remaining_bonus == 4
        assert result.remaining_daily == 0
        assert account.daily_credits_used == 3
        assert account.bonus_credits == 4
        db_session.commit.assert_awaited_once()

    async def test_expired_window_reset_before_deduction(self, db_session: AsyncMock):
        account = create_mock_account(
            bonus_credits=0, daily_credits_used=3, daily_reset_at=_utc_now() - timedelta(hours=1)
        )
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = account
            result = await ledger.deduct("user-123", 1)

        assert result.source == CreditSource.DAILY
        assert result.remaining_daily == 2
        assert account.daily_credits_used == 1

    async def test_insufficient_leaves_balances_unchanged(self, db_session: AsyncMock):
        reset_at = _utc_now() + timedelta(hours=3)
        account = create_mock_account(bonus_credits=1, daily_credits_used=3, daily_reset_at=reset_at)
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = account
            with pytest.raises(InsufficientCreditsError) as exc_info:
                await ledger.deduct("user-123", 2)

        assert exc_info.value.balance == 1
        assert account.bonus_credits == 1
        assert account.daily_credits_used == 3
        db_session.commit.assert_not_awaited()
        db_session.rollback.assert_awaited_once()

    async def test_window_reset_kept_when_denied(self, db_session: AsyncMock):
        account = create_mock_account(
            bonus_credits=0, daily_credits_used=3, daily_reset_at=_utc_now() - timedelta(hours=1)
        )
        ledger = AccountCreditLedger(db_session, daily_allowance=3)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = account
            with pytest.raises(InsufficientCreditsError):
                await ledger.deduct("user-123", 4)

        assert account.daily_credits_used == 0
        db_session.commit.assert_awaited_once()

    async def test_missing_account(self, db_session: AsyncMock):
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = None
            with pytest.raises(AccountNotFoundError):
                await ledger.deduct("missing", 1)

    async def test_storage_failure_rolls_back(self, db_session: AsyncMock):
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.side_effect = _db_error()
            with pytest.raises(StorageError):
                await ledger.deduct("user-123", 1)

        db_session.rollback.assert_awaited_once()


class TestAddBonus:
    """Tests for add_bonus()."""

    async def test_adds_to_bonus_pool(self, db_session: AsyncMock):
        account = create_mock_account(bonus_credits=10)
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = account
            total = await ledger.add_bonus("user-123", 5)

        assert total == 15
        assert account.bonus_credits == 15

    @pytest.mark.parametrize("amount", [0, -3, 2.5, True])
    async def test_rejects_invalid_amounts(self, db_session: AsyncMock, amount):
        ledger = AccountCreditLedger(db_session)

        with pytest.raises(ValueError):
            await ledger.add_bonus("user-123", amount)

        db_session.execute.assert_not_awaited()

    async def test_missing_account(self, db_session: AsyncMock):
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_lock_account", new_callable=AsyncMock) as mock_lock:
            mock_lock.return_value = None
            with pytest.raises(AccountNotFoundError):
                await ledger.add_bonus("missing", 5)


class TestEnsureAccount:
    """Tests for ensure_account()."""

    async def test_creates_with_lifecycle_defaults(self, db_session: AsyncMock):
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_find_account", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = None
            await ledger.ensure_account("user-123", "user@example.com")

        created = db_session.add.call_args[0][0]
        assert isinstance(created, Account)
        assert created.id == "user-123"
        assert created.bonus_credits == 0
        assert created.daily_credits_used == 0
        assert created.signup_bonus_given is False
        assert created.is_pro is False
        assert created.daily_reset_at > _utc_now() + timedelta(hours=23)
        db_session.commit.assert_awaited_once()

    async def test_existing_account_untouched(self, db_session: AsyncMock, free_account: MagicMock):
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_find_account", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = free_account
            await ledger.ensure_account("user-123", "user@example.com")

        db_session.add.assert_not_called()

    async def test_concurrent_insert_is_tolerated(self, db_session: AsyncMock):
        db_session.flush = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("dup")))
        ledger = AccountCreditLedger(db_session)

        with patch.object(ledger, "_find_account", new_callable=AsyncMock) as mock_find:
            mock_find.return_value = None
            await ledger.ensure_account("user-123", "user@example.com")

        db_session.rollback.assert_awaited_once()


class TestFindAccountByEmail:
    """Tests for find_account_id_by_email()."""

    async def test_found(self, db_session: AsyncMock):
        db_session.execute = AsyncMock(return_value=make_result(first="user-123"))
        ledger = AccountCreditLedger(db_session)

        assert await ledger.find_account_id_by_email("User@Example.com") == "user-123"

    async def test_not_found(self, db_session: AsyncMock):
        ledger = AccountCreditLedger(db_session)

        assert await ledger.find_account_id_by_email("nobody@example.com") is None


def _compiled(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestRowLocking:
    """Mutations read the account row with SELECT ... FOR UPDATE."""

    @pytest.fixture
    def locked_session(self, db_session: AsyncMock) -> AsyncMock:
        account = create_mock_account(
            bonus_credits=5, daily_credits_used=0, daily_reset_at=_utc_now() + timedelta(hours=3)
        )
        db_session.execute = AsyncMock(return_value=make_result(scalar=account))
        return db_session

    async def test_deduct_locks_row(self, locked_session: AsyncMock):
        await AccountCreditLedger(locked_session).deduct("user-123", 1)

        stmt = locked_session.execute.await_args_list[0].args[0]
        assert stmt._for_update_arg is not None
        assert "FOR UPDATE" in _compiled(stmt)

    async def test_add_bonus_locks_row(self, locked_session: AsyncMock):
        await AccountCreditLedger(locked_session).add_bonus("user-123", 5)

        stmt = locked_session.execute.await_args_list[0].args[0]
        assert "FOR UPDATE" in _compiled(stmt)

    async def test_window_reset_locks_row(self, locked_session: AsyncMock):
        await AccountCreditLedger(locked_session).reset_window_if_expired("user-123")

        stmt = locked_session.execute.await_args_list[0].args[0]
        assert "FOR UPDATE" in _compiled(stmt)

    async def test_lock_taken_before_commit(self, locked_session: AsyncMock):
        calls: list[str] = []
        account = create_mock_account(bonus_credits=5)

        def record_execute(*args, **kwargs):
            calls.append("execute")
            return make_result(scalar=account)

        locked_session.execute.side_effect = record_execute
        locked_session.commit.side_effect = lambda: calls.append("commit")

        await AccountCreditLedger(locked_session).deduct("user-123", 1)

        assert calls == ["execute", "commit"]

    async def test_read_info_does_not_lock(self, db_session: AsyncMock):
        await AccountCreditLedger(db_session).read_info("user-123")

        stmt = db_session.execute.await_args.args[0]
        assert "FOR UPDATE" not in _compiled(stmt)
