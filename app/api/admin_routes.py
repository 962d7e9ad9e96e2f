"""
Admin API routes - shared-secret credit top-ups.

Every rejected request answers the same 401 so callers can't tell which
emails exist or which field was wrong.
"""

import hmac
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.session import get_write_db
from app.exceptions import AccountNotFoundError, StorageError
from app.models.api import AddCreditsRequest, AddCreditsResponse
from app.services.credit_ledger import AccountCreditLedger

logger = get_logger(__name__)
router = APIRouter(tags=["admin"])


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _secret_matches(secret: Any) -> bool:
    if not isinstance(secret, str) or not secret or not settings.admin_secret:
        return False
    return hmac.compare_digest(secret.encode(), settings.admin_secret.encode())


@router.post("/api/credits/add", response_model=AddCreditsResponse)
async def add_credits(
    request: AddCreditsRequest,
    db: AsyncSession = Depends(get_write_db),
) -> JSONResponse:
    """Add bonus credits to the account registered under `email`."""
    if not _secret_matches(request.secret):
        logger.warning("admin_secret_rejected")
        raise _unauthorized()

    if not isinstance(request.email, str) or not request.email.strip():
        raise _unauthorized()

    credits = request.credits
    if isinstance(credits, float) and credits.is_integer():
        credits = int(credits)
    if isinstance(credits, bool) or not isinstance(credits, int) or credits <= 0:
        raise _unauthorized()

    email = request.email.strip().lower()
    ledger = AccountCreditLedger(db)

    try:
        account_id = await ledger.find_account_id_by_email(email)
        if account_id is None:
            raise _unauthorized()
        total = await ledger.add_bonus(account_id, credits)
    except AccountNotFoundError as exc:
        raise _unauthorized() from exc
    except StorageError as exc:
        logger.error("admin_add_credits_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc

    logger.info("admin_credits_added", account_id=account_id, credits=credits, total=total)
    response = AddCreditsResponse(email=email, credits_added=credits, total_credits=total)
    return JSONResponse(content=response.model_dump(by_alias=True))
