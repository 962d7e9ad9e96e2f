"""
Signup Bonus Granter - one-time bonus credits for new accounts.

The persisted `signup_bonus_given` flag gates the grant; it is read and
written under a row lock, so two concurrent first calls grant once.
"""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Account
from app.exceptions import StorageError
from app.observability.metrics import metrics

logger = get_logger(__name__)


class SignupBonusGranter:
    """Grants the signup bonus at most once per account."""

    def __init__(self, session: AsyncSession, bonus: int | None = None) -> None:
        self.session = session
        self.bonus = settings.signup_bonus if bonus is None else bonus

    async def grant_if_needed(self, account_id: str) -> bool:
        """
        Grant the signup bonus unless already given.

        Returns True if credits were granted by this call. A missing account
        row is a no-op.
        """
        stmt = select(Account).where(Account.id == account_id).with_for_update()
        try:
            result = await self.session.execute(stmt)
            account = result.scalar_one_or_none()

            if account is None or account.signup_bonus_given:
                await self.session.rollback()
                return False

            account.bonus_credits = account.bonus_credits + self.bonus
            account.signup_bonus_given = True
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to grant signup bonus: {e}") from e

        metrics.record_bonus_grant("signup", self.bonus)
        logger.info("signup_bonus_granted", account_id=account_id, amount=self.bonus)
        return True
