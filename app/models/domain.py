"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime

from app.models.api import CreditSource, DenialReason, IdentityTier, PromptMode, RequestState

# Remaining-credit value reported to Pro callers of the prompt endpoints
UNLIMITED_CREDITS = -1

# Remaining-credit value shown to Pro users on the account summary
PRO_DISPLAY_CREDITS = 999999

MODE_CREDIT_COSTS: dict[PromptMode, int] = {
    PromptMode.IMPROVE: 1,
    PromptMode.REFINE: 1,
    PromptMode.FOLLOWUP: 2,
}


def credit_cost(mode: PromptMode) -> int:
    """Credit cost of one rewrite in the given mode."""
    return MODE_CREDIT_COSTS[mode]


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity returned by the identity provider for a verified token."""

    account_id: str
    email: str | None

    def __post_init__(self) -> None:
        if not self.account_id:
            raise ValueError("account_id cannot be empty")


@dataclass(frozen=True)
class AccountCreditInfo:
    """Immutable snapshot of an account's credit fields."""

    bonus_credits: int
    daily_credits_used: int
    daily_reset_at: datetime | None
    signup_bonus_given: bool

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.bonus_credits < 0:
            raise ValueError(f"Bonus credits cannot be negative: {self.bonus_credits}")
        if self.daily_credits_used < 0:
            raise ValueError(f"Daily credits used cannot be negative: {self.daily_credits_used}")

    @classmethod
    def fresh(cls) -> "AccountCreditInfo":
        """Defaults for an account with no stored row."""
        return cls(
            bonus_credits=0,
            daily_credits_used=0,
            daily_reset_at=None,
            signup_bonus_given=False,
        )


@dataclass(frozen=True)
class DeductionPlan:
    """Counter values after drawing a cost from daily allowance then bonus."""

    daily_credits_used: int
    bonus_credits: int
    daily_drawn: int
    bonus_drawn: int
    source: CreditSource


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of a persisted free-account deduction."""

    remaining_bonus: int
    remaining_daily: int
    source: CreditSource


@dataclass(frozen=True)
class GenerationParams:
    """Model parameters for one completion call."""

    model: str
    temperature: float
    max_tokens: int

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive: {self.max_tokens}")


@dataclass(frozen=True)
class PromptCommand:
    """A prompt rewrite request after HTTP decoding."""

    mode: PromptMode | str
    original_prompt: str | None
    previous_prompt: str | None
    token: str | None
    client_key: str


@dataclass(frozen=True)
class PromptCompleted:
    """Terminal COMPLETED outcome."""

    output: str
    credits_remaining: int
    tier: IdentityTier
    state: RequestState = RequestState.COMPLETED


@dataclass(frozen=True)
class PromptDenied:
    """Terminal DENIED outcome with the state the request had reached."""

    status_code: int
    reason: DenialReason
    message: str
    reached: RequestState
    credits_remaining: int | None = None
    state: RequestState = RequestState.DENIED


PromptOutcome = PromptCompleted | PromptDenied


@dataclass(frozen=True)
class AccountSummary:
    """Plan and spendable credits shown to a signed-in user."""

    email: str | None
    is_pro: bool
    credits_remaining: int

    @property
    def plan(self) -> str:
        return "pro" if self.is_pro else "free"
