"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for users table.

    One row per registered identity. Holds the Pro flag and both credit
    sources: the rolling daily counter and the non-expiring bonus pool.
    """

    __tablename__ = "users"

    # Primary Key - identity provider subject id
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Tier
    is_pro: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Non-expiring credits (signup bonus + admin top-ups)
    bonus_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Daily allowance window
    daily_credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    signup_bonus_given: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("bonus_credits >= 0", name="ck_bonus_credits_non_negative"),
        CheckConstraint("daily_credits_used >= 0", name="ck_daily_credits_used_non_negative"),
        Index("idx_users_email", "email"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Account(id={self.id}, is_pro={self.is_pro}, bonus={self.bonus_credits}, "
            f"daily_used={self.daily_credits_used})>"
        )


class PromptRecord(Base):
    """
    ORM model for prompts table.

    Append-only record of every successful rewrite by an authenticated user.
    """

    __tablename__ = "prompts"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    input_text: Mapped[str] = mapped_column(Text, nullable=False)
    output_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_prompts_created_at", "created_at"),)


class PromptHistoryEntry(Base):
    """
    ORM model for prompt_history table.

    Entries saved explicitly by clients, listed newest-first.
    """

    __tablename__ = "prompt_history"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    original_input: Mapped[str] = mapped_column(Text, nullable=False)
    final_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_prompt_history_user_created", "user_id", "created_at"),)
