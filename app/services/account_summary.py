"""
Account Summary Service - the signed-in user's plan and spendable credits.

The first summary for an account creates its row and grants the signup
bonus. Both steps are best effort: a failure is logged and the summary is
built from whatever is stored.
"""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Account
from app.exceptions import StorageError
from app.models.domain import PRO_DISPLAY_CREDITS, AccountSummary, AuthenticatedUser
from app.services.credit_ledger import (
    AccountCreditLedger,
    daily_available,
    should_reset_daily_window,
)
from app.services.signup_bonus import SignupBonusGranter

logger = get_logger(__name__)


class AccountSummaryService:
    """Builds the account summary for an authenticated user."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: AccountCreditLedger | None = None,
        granter: SignupBonusGranter | None = None,
    ) -> None:
        self.session = session
        self.ledger = ledger or AccountCreditLedger(session)
        self.granter = granter or SignupBonusGranter(session)

    async def summarize(self, user: AuthenticatedUser) -> AccountSummary:
        """
        Summarize plan and credits.

        Pro accounts report PRO_DISPLAY_CREDITS. Free accounts report daily
        available plus bonus; an expired window counts as a full allowance
        without being persisted.
        """
        try:
            await self.ledger.ensure_account(user.account_id, user.email)
            await self.granter.grant_if_needed(user.account_id)
        except StorageError as e:
            logger.warning("signup_bonus_grant_failed", account_id=user.account_id, error=str(e))

        try:
            result = await self.session.execute(select(Account).where(Account.id == user.account_id))
            account = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get user data: {e}") from e

        if account is None:
            return AccountSummary(email=user.email, is_pro=False, credits_remaining=0)

        email = account.email or user.email
        if account.is_pro:
            return AccountSummary(email=email, is_pro=True, credits_remaining=PRO_DISPLAY_CREDITS)

        if should_reset_daily_window(account.daily_reset_at):
            daily = self.ledger.daily_allowance
        else:
            daily = daily_available(account.daily_credits_used, self.ledger.daily_allowance)

        return AccountSummary(
            email=email,
            is_pro=False,
            credits_remaining=daily + account.bonus_credits,
        )
