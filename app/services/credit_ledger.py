"""
Account Credit Ledger - persisted credit accounting for free accounts.

Each account draws from two independent counters:
- a daily allowance that replenishes when its rolling window expires
- a non-expiring bonus pool (signup bonus + admin top-ups)

Mutations lock the account row (SELECT ... FOR UPDATE) for the whole
read-compute-write, so concurrent requests for one account are serialized.
"""

from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Account
from app.exceptions import AccountNotFoundError, InsufficientCreditsError, StorageError
from app.models.api import CreditSource
from app.models.domain import AccountCreditInfo, DeductionPlan, DeductionResult
from app.observability.metrics import metrics

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _get_next_reset_time(now: datetime, window_hours: int | None = None) -> datetime:
    """End of a daily window opened at `now`."""
    hours = settings.daily_window_hours if window_hours is None else window_hours
    return now + timedelta(hours=hours)


def should_reset_daily_window(reset_at: datetime | None, now: datetime | None = None) -> bool:
    """Check if the daily window has expired (or was never opened)."""
    if reset_at is None:
        return True
    return (now or _utc_now()) >= reset_at


def daily_available(daily_credits_used: int, daily_allowance: int) -> int:
    """Daily credits still available in the current window."""
    return max(0, daily_allowance - daily_credits_used)


def available_balance(info: AccountCreditInfo, daily_allowance: int) -> int:
    """Total spendable credits: remaining daily allowance plus bonus pool."""
    return daily_available(info.daily_credits_used, daily_allowance) + info.bonus_credits


def plan_deduction(
    daily_credits_used: int,
    bonus_credits: int,
    cost: int,
    daily_allowance: int,
) -> DeductionPlan:
    """
    Compute counters after drawing `cost`, daily allowance first.

    Raises:
        InsufficientCreditsError: daily + bonus below cost
    """
    if cost <= 0:
        raise ValueError(f"Deduction cost must be positive: {cost}")

    daily = daily_available(daily_credits_used, daily_allowance)
    if daily + bonus_credits < cost:
        raise InsufficientCreditsError(balance=daily + bonus_credits, required=cost)

    daily_drawn = min(daily, cost)
    bonus_drawn = cost - daily_drawn

    return DeductionPlan(
        daily_credits_used=daily_credits_used + daily_drawn,
        bonus_credits=bonus_credits - bonus_drawn,
        daily_drawn=daily_drawn,
        bonus_drawn=bonus_drawn,
        source=CreditSource.DAILY if bonus_drawn == 0 else CreditSource.MIXED,
    )


class AccountCreditLedger:
    """
    Credit ledger bound to one database session.

    Every public mutation commits its own transaction. Storage failures are
    rolled back and surfaced as StorageError.
    """

    def __init__(
        self,
        session: AsyncSession,
        daily_allowance: int | None = None,
        window_hours: int | None = None,
    ) -> None:
        """Initialize ledger with database session."""
        self.session = session
        self.daily_allowance = (
            settings.daily_allowance if daily_allowance is None else daily_allowance
        )
        self.window_hours = settings.daily_window_hours if window_hours is None else window_hours

    async def read_info(self, account_id: str) -> AccountCreditInfo:
        """
        Read credit fields for an account.

        A missing row reads as a fresh free account; it is not an error.
        """
        try:
            account = await self._find_account(account_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read credit info: {e}") from e

        if account is None:
            return AccountCreditInfo.fresh()
        return self._to_info(account)

    def available_balance(self, info: AccountCreditInfo) -> int:
        """Spendable credits for a credit snapshot."""
        return available_balance(info, self.daily_allowance)

    async def reset_window_if_expired(self, account_id: str) -> bool:
        """
        Zero the daily counter and open a new window if the current one expired.

        Returns True if a reset was persisted.
        """
        try:
            account = await self._lock_account(account_id)
            if account is None:
                await self.session.rollback()
                return False

            if not self._apply_window_reset(account, _utc_now()):
                await self.session.rollback()
                return False

            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to reset daily credits: {e}") from e

        return True

    async def deduct(self, account_id: str, cost: int) -> DeductionResult:
        """
        Deduct `cost` credits, daily allowance first, shortfall from bonus.

        The window reset is applied first and kept even when the deduction
        is refused; it never lowers the available balance.

        Raises:
            AccountNotFoundError: no row to deduct from
            InsufficientCreditsError: balance below cost (balances unchanged)
            StorageError: database failure
        """
        try:
            account = await self._lock_account(account_id)
            if account is None:
                await self.session.rollback()
                raise AccountNotFoundError(account_id)

            reset = self._apply_window_reset(account, _utc_now())

            try:
                plan = plan_deduction(
                    daily_credits_used=account.daily_credits_used,
                    bonus_credits=account.bonus_credits,
                    cost=cost,
                    daily_allowance=self.daily_allowance,
                )
            except InsufficientCreditsError:
                logger.info(
                    "credits_insufficient",
                    account_id=account_id,
                    cost=cost,
                    daily_used=account.daily_credits_used,
                    bonus=account.bonus_credits,
                )
                if reset:
                    await self.session.flush()
                    await self.session.commit()
                else:
                    await self.session.rollback()
                raise

            account.daily_credits_used = plan.daily_credits_used
            account.bonus_credits = plan.bonus_credits
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to deduct credits: {e}") from e

        remaining_daily = daily_available(plan.daily_credits_used, self.daily_allowance)
        logger.info(
            "credits_deducted",
            account_id=account_id,
            cost=cost,
            daily_drawn=plan.daily_drawn,
            bonus_drawn=plan.bonus_drawn,
            remaining_bonus=plan.bonus_credits,
            remaining_daily=remaining_daily,
            source=plan.source.value,
        )
        return DeductionResult(
            remaining_bonus=plan.bonus_credits,
            remaining_daily=remaining_daily,
            source=plan.source,
        )

    async def add_bonus(self, account_id: str, amount: int) -> int:
        """
        Add `amount` bonus credits (administrative top-up).

        Returns the new bonus total.

        Raises:
            ValueError: amount is not a positive integer
            AccountNotFoundError: account doesn't exist
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError(f"Bonus amount must be a positive integer: {amount!r}")

        try:
            account = await self._lock_account(account_id)
            if account is None:
                await self.session.rollback()
                raise AccountNotFoundError(account_id)

            account.bonus_credits = account.bonus_credits + amount
            total = account.bonus_credits
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to add credits: {e}") from e

        metrics.record_bonus_grant("top_up", amount)
        logger.info("bonus_credits_added", account_id=account_id, amount=amount, total=total)
        return total

    async def ensure_account(self, account_id: str, email: str | None) -> None:
        """
        Create the account row if it doesn't exist yet.

        New rows start with no bonus, an unused daily counter, a window ending
        one window length from now and the signup bonus not yet given.
        """
        try:
            if await self._find_account(account_id) is not None:
                return

            new_account = Account(
                id=account_id,
                email=email,
                is_pro=False,
                bonus_credits=0,
                daily_credits_used=0,
                daily_reset_at=_get_next_reset_time(_utc_now(), self.window_hours),
                signup_bonus_given=False,
            )
            self.session.add(new_account)

            try:
                await self.session.flush()
                await self.session.commit()
            except IntegrityError:
                # Race condition - account created by another request
                await self.session.rollback()
                logger.info("account_created_concurrently", account_id=account_id)
                return
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to create account: {e}") from e

        logger.info("account_created", account_id=account_id)

    async def find_account_id_by_email(self, email: str) -> str | None:
        """Look up an account id by (case-insensitive) email."""
        stmt = select(Account.id).where(func.lower(Account.email) == email.strip().lower())
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to find account: {e}") from e
        return result.scalars().first()

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _apply_window_reset(self, account: Account, now: datetime) -> bool:
        if not should_reset_daily_window(account.daily_reset_at, now):
            return False
        account.daily_credits_used = 0
        account.daily_reset_at = _get_next_reset_time(now, self.window_hours)
        logger.info(
            "daily_credits_reset",
            account_id=account.id,
            next_reset=account.daily_reset_at.isoformat(),
        )
        return True

    async def _find_account(self, account_id: str) -> Account | None:
        """Find account by id."""
        stmt = select(Account).where(Account.id == account_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_account(self, account_id: str) -> Account | None:
        """Lock account row for update (SELECT FOR UPDATE)."""
        stmt = select(Account).where(Account.id == account_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _to_info(account: Account) -> AccountCreditInfo:
        return AccountCreditInfo(
            bonus_credits=account.bonus_credits,
            daily_credits_used=account.daily_credits_used,
            daily_reset_at=account.daily_reset_at,
            signup_bonus_given=account.signup_bonus_given,
        )
