"""Tier Resolver - Pro status lookup."""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Account
from app.exceptions import AuthorizationError, StorageError


class TierResolver:
    """Resolves whether an account holds the Pro tier."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def is_pro(self, account_id: str) -> bool:
        """True if the account is Pro. Missing accounts are not Pro."""
        stmt = select(Account.is_pro).where(Account.id == account_id)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to resolve tier: {e}") from e
        return bool(result.scalar_one_or_none())

    async def require_pro(self, account_id: str) -> None:
        """
        Ensure the account holds the Pro tier.

        Raises:
            AuthorizationError: account is free or missing
            StorageError: lookup failed
        """
        if not await self.is_pro(account_id):
            raise AuthorizationError(required_tier="pro")
