"""
Prompt History Service - append-only prompt records and saved history.
"""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import PromptHistoryEntry, PromptRecord
from app.exceptions import InvalidRequestError, StorageError

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 100


class PromptHistoryService:
    """Writes and reads per-account prompt history."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append_prompt(self, account_id: str, input_text: str, output_text: str | None) -> None:
        """Record a completed rewrite for an authenticated account."""
        if not input_text:
            raise InvalidRequestError("Input text is required")

        self.session.add(
            PromptRecord(user_id=account_id, input_text=input_text, output_text=output_text or None)
        )
        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to save prompt: {e}") from e

    async def save_entry(
        self,
        account_id: str,
        entry_type: str,
        original_input: str,
        final_prompt: str,
    ) -> PromptHistoryEntry:
        """Save a history entry explicitly submitted by the client."""
        if not entry_type or not original_input or not final_prompt:
            raise InvalidRequestError("Type, original_input, and final_prompt are required")

        entry = PromptHistoryEntry(
            user_id=account_id,
            type=entry_type,
            original_input=original_input,
            final_prompt=final_prompt,
        )
        self.session.add(entry)
        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(f"Failed to save prompt history: {e}") from e

        logger.info("prompt_history_saved", account_id=account_id, type=entry_type)
        return entry

    async def list_entries(
        self, account_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[PromptHistoryEntry]:
        """Newest-first history for an account, at most MAX_HISTORY_LIMIT rows."""
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        stmt = (
            select(PromptHistoryEntry)
            .where(PromptHistoryEntry.user_id == account_id)
            .order_by(PromptHistoryEntry.created_at.desc())
            .limit(limit)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get prompt history: {e}") from e
        return list(result.scalars().all())
