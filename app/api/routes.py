"""
API Routes - FastAPI endpoints for prompt rewriting, accounts and history.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import (
    authenticate,
    get_access_controller,
    get_bearer_token,
    get_client_key,
    get_current_user,
    get_identity_verifier,
)
from app.db.session import get_read_db, get_write_db
from app.exceptions import InvalidRequestError, StorageError
from app.models.api import (
    AccountSummaryResponse,
    DenialResponse,
    HealthResponse,
    HistoryItem,
    HistoryListResponse,
    HistorySaveRequest,
    HistorySaveResponse,
    ProCheckResponse,
    PromptRequest,
    PromptSuccessResponse,
)
from app.models.domain import AuthenticatedUser, PromptCommand, PromptCompleted
from app.observability import log_context
from app.services.access_controller import AccessController
from app.services.account_summary import AccountSummaryService
from app.services.history import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT, PromptHistoryService
from app.services.identity import IdentityVerifier
from app.services.tier import TierResolver

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Prompt Rewriting
# =============================================================================


@router.post(
    "/api/prompts/{mode}",
    response_model=PromptSuccessResponse,
    responses={
        400: {"model": DenialResponse},
        401: {"model": DenialResponse},
        402: {"model": DenialResponse},
        403: {"model": DenialResponse},
        500: {"model": DenialResponse},
    },
)
async def rewrite_prompt(
    mode: str,
    body: PromptRequest | None = None,
    header_token: str | None = Depends(get_bearer_token),
    client_key: str = Depends(get_client_key),
    controller: AccessController = Depends(get_access_controller),
) -> JSONResponse:
    """
    Rewrite a prompt in `improve`, `refine` or `followup` mode.

    Token comes from the body or the Authorization header (body wins).
    Anonymous callers draw from their per-client pool, free accounts from
    daily + bonus credits, Pro accounts are unlimited. Followup requires Pro.
    """
    body = body or PromptRequest()
    command = PromptCommand(
        mode=mode,
        original_prompt=body.original_prompt,
        previous_prompt=body.previous_prompt,
        token=body.token or header_token,
        client_key=client_key,
    )

    with log_context(mode=mode):
        outcome = await controller.handle(command)

    if isinstance(outcome, PromptCompleted):
        success = PromptSuccessResponse(
            output=outcome.output,
            credits_remaining=outcome.credits_remaining,
        )
        return JSONResponse(content=success.model_dump(mode="json", by_alias=True))

    denial = DenialResponse(
        error=outcome.message,
        reason=outcome.reason,
        credits_remaining=outcome.credits_remaining,
    )
    return JSONResponse(
        status_code=outcome.status_code,
        content=denial.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


# =============================================================================
# Account Endpoints (Bearer access token)
# =============================================================================


@router.get("/api/me", response_model=AccountSummaryResponse)
async def get_me(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> AccountSummaryResponse:
    """
    Current user's plan and spendable credits.

    The first call for an account grants the signup bonus.
    """
    try:
        summary = await AccountSummaryService(db).summarize(user)
    except StorageError as exc:
        logger.error("account_summary_failed", account_id=user.account_id, error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=exc.message,
        ) from exc

    return AccountSummaryResponse(
        email=summary.email,
        plan=summary.plan,
        credits_remaining=summary.credits_remaining,
        credits=summary.credits_remaining,
        is_pro=summary.is_pro,
    )


@router.get("/api/pro/check", response_model=ProCheckResponse)
async def check_pro(
    token: str | None = Query(None),
    header_token: str | None = Depends(get_bearer_token),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    db: AsyncSession = Depends(get_read_db),
) -> JSONResponse:
    """Pro status for the bearer (header token or `token` query parameter)."""
    user = await authenticate(header_token or token, verifier)

    try:
        is_pro = await TierResolver(db).is_pro(user.account_id)
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=exc.message,
        ) from exc

    return JSONResponse(content=ProCheckResponse(is_pro=is_pro).model_dump(by_alias=True))


# =============================================================================
# Prompt History
# =============================================================================


@router.post("/api/history/save", response_model=HistorySaveResponse)
async def save_history(
    request: HistorySaveRequest,
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    db: AsyncSession = Depends(get_write_db),
) -> HistorySaveResponse:
    """Save a prompt history entry for the token's account."""
    if not request.token or not request.type or not request.original_input or not request.final_prompt:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: token, type, original_input, final_prompt",
        )

    user = await authenticate(request.token, verifier)

    try:
        await PromptHistoryService(db).save_entry(
            account_id=user.account_id,
            entry_type=request.type,
            original_input=request.original_input,
            final_prompt=request.final_prompt,
        )
    except InvalidRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=exc.message,
        ) from exc

    return HistorySaveResponse(success=True)


@router.get("/api/history", response_model=HistoryListResponse)
async def list_history(
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> HistoryListResponse:
    """Newest-first prompt history for the bearer."""
    try:
        entries = await PromptHistoryService(db).list_entries(user.account_id, limit=limit)
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=exc.message,
        ) from exc

    return HistoryListResponse(
        items=[
            HistoryItem(
                id=entry.id,
                type=entry.type,
                original_input=entry.original_input,
                final_prompt=entry.final_prompt,
                created_at=entry.created_at,
            )
            for entry in entries
        ]
    )


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except (SQLAlchemyError, OSError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
