"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.

Response field aliases keep the camelCase keys that existing browser and
extension clients read (creditsRemaining, isPro, ...).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PromptMode(str, Enum):
    """Prompt rewrite mode."""

    IMPROVE = "improve"
    REFINE = "refine"
    FOLLOWUP = "followup"


class IdentityTier(str, Enum):
    """Caller tier resolved for a request."""

    ANONYMOUS = "anonymous"
    FREE = "free"
    PRO = "pro"


class CreditSource(str, Enum):
    """Which pools a free-account deduction drew from."""

    DAILY = "daily"
    MIXED = "mixed"


class DenialReason(str, Enum):
    """Stable machine-checkable denial reasons."""

    INVALID_REQUEST = "invalid-request"
    INVALID_TOKEN = "invalid-token"
    AUTH_REQUIRED = "auth-required"
    PRO_REQUIRED = "pro-required"
    INSUFFICIENT_CREDITS = "insufficient-credits"
    STORAGE_ERROR = "storage-error"
    GENERATION_ERROR = "generation-error"


class RequestState(str, Enum):
    """Access-control state reached by a prompt request."""

    UNAUTHENTICATED = "unauthenticated"
    IDENTIFIED = "identified"
    TIER_CHECKED = "tier_checked"
    BALANCE_RESERVED = "balance_reserved"
    COMPLETED = "completed"
    DENIED = "denied"


# ============================================================================
# Prompt Models
# ============================================================================


class PromptRequest(BaseModel):
    """POST /api/prompts/{mode} request body.

    Fields are optional at the schema level so that a missing prompt is
    reported as a 400 denial instead of a schema error.
    """

    original_prompt: str | None = None
    previous_prompt: str | None = None
    token: str | None = None


class PromptSuccessResponse(BaseModel):
    """Successful prompt rewrite."""

    model_config = ConfigDict(populate_by_name=True)

    success: Literal[True] = True
    output: str
    credits_remaining: int = Field(..., serialization_alias="creditsRemaining")


class DenialResponse(BaseModel):
    """Structured denial returned for every non-success outcome."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    reason: DenialReason
    credits_remaining: int | None = Field(None, serialization_alias="creditsRemaining")


# ============================================================================
# Account Models
# ============================================================================


class AccountSummaryResponse(BaseModel):
    """GET /api/me response."""

    email: str | None
    plan: Literal["free", "pro"]
    credits_remaining: int
    credits: int  # Alias of credits_remaining for older clients
    is_pro: bool


class ProCheckResponse(BaseModel):
    """GET /api/pro/check response."""

    model_config = ConfigDict(populate_by_name=True)

    is_pro: bool = Field(..., serialization_alias="isPro")


# ============================================================================
# History Models
# ============================================================================


class HistorySaveRequest(BaseModel):
    """POST /api/history/save request body."""

    token: str | None = None
    type: str | None = Field(None, max_length=50)
    original_input: str | None = None
    final_prompt: str | None = None


class HistorySaveResponse(BaseModel):
    """POST /api/history/save response."""

    success: bool = True


class HistoryItem(BaseModel):
    """Single prompt history entry."""

    id: UUID
    type: str
    original_input: str
    final_prompt: str
    created_at: datetime


class HistoryListResponse(BaseModel):
    """GET /api/history response."""

    items: list[HistoryItem]


# ============================================================================
# Admin Models
# ============================================================================


class AddCreditsRequest(BaseModel):
    """POST /api/credits/add request body.

    Validated by the route so every rejection answers the same 401.
    """

    # Type-checked by the route after the secret; strings and bools are rejected as credits
    email: Any = None
    credits: Any = None
    secret: Any = None


class AddCreditsResponse(BaseModel):
    """POST /api/credits/add response."""

    model_config = ConfigDict(populate_by_name=True)

    success: Literal[True] = True
    email: str
    credits_added: int = Field(..., serialization_alias="creditsAdded")
    total_credits: int = Field(..., serialization_alias="totalCredits")


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
