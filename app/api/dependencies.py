"""
FastAPI Dependencies - identity, client keys and service wiring.

Long-lived collaborators (anonymous pool, identity client, generator) are
created once in the application lifespan and read from app.state; database
bound services are built per request.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.session import get_write_db
from app.exceptions import AuthenticationError
from app.models.domain import AuthenticatedUser
from app.services.access_controller import AccessController
from app.services.anonymous_credits import AnonymousCreditPool
from app.services.client_identifier import identify
from app.services.credit_ledger import AccountCreditLedger
from app.services.generation import PromptGenerator
from app.services.history import PromptHistoryService
from app.services.identity import INVALID_TOKEN_MESSAGE, IdentityVerifier
from app.services.tier import TierResolver

logger = get_logger(__name__)

# Bearer token scheme; a missing header is handled per route
bearer_scheme = HTTPBearer(auto_error=False)


def get_anonymous_pool(request: Request) -> AnonymousCreditPool:
    pool: AnonymousCreditPool = request.app.state.anonymous_pool
    return pool


def get_identity_verifier(request: Request) -> IdentityVerifier:
    verifier: IdentityVerifier = request.app.state.identity_verifier
    return verifier


def get_prompt_generator(request: Request) -> PromptGenerator:
    generator: PromptGenerator = request.app.state.prompt_generator
    return generator


def get_client_key(request: Request) -> str:
    """Anonymous pool key for the calling client."""
    client_host = request.client.host if request.client else None
    return identify(request.headers, client_host)


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """Bearer token from the Authorization header, if any."""
    if credentials is None or not credentials.credentials:
        return None
    return credentials.credentials


async def authenticate(token: str | None, verifier: IdentityVerifier) -> AuthenticatedUser:
    """
    Verify a token or fail the request with 401.

    Raises:
        HTTPException 401 if no token or invalid token
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing access token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return await verifier.verify_token(token)
    except AuthenticationError as exc:
        logger.info("authentication_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=INVALID_TOKEN_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> AuthenticatedUser:
    """
    FastAPI dependency requiring `Authorization: Bearer {access_token}`.

    Usage:
        @router.get("/api/me")
        async def me(user: AuthenticatedUser = Depends(get_current_user)):
            ...
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await authenticate(credentials.credentials, verifier)


def get_access_controller(
    db: AsyncSession = Depends(get_write_db),
    pool: AnonymousCreditPool = Depends(get_anonymous_pool),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    generator: PromptGenerator = Depends(get_prompt_generator),
) -> AccessController:
    """Access controller bound to this request's database session."""
    return AccessController(
        pool=pool,
        identity=verifier,
        generator=generator,
        ledger=AccountCreditLedger(db),
        tiers=TierResolver(db),
        history=PromptHistoryService(db),
    )
