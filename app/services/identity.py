"""
Identity Verifier - resolves bearer tokens against the identity provider.

Talks to a Supabase-compatible auth endpoint: GET {base_url}/auth/v1/user
with the project's anon key and the caller's access token.
"""

import httpx
from structlog import get_logger

from app.exceptions import AuthenticationError
from app.models.domain import AuthenticatedUser

logger = get_logger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class IdentityVerifier:
    """Identity provider client."""

    USER_PATH = "/auth/v1/user"

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._http_client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.anon_key)

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def verify_token(self, token: str) -> AuthenticatedUser:
        """
        Verify an access token and return the account it belongs to.

        Raises:
            AuthenticationError: token missing, rejected or provider unreachable
        """
        if not token or not token.strip():
            raise AuthenticationError("Missing token")
        if not self.configured:
            logger.error("identity_provider_not_configured")
            raise AuthenticationError("Identity provider not configured")

        try:
            response = await self.http_client.get(
                f"{self.base_url}{self.USER_PATH}",
                headers={
                    "apikey": self.anon_key,
                    "Authorization": f"Bearer {token.strip()}",
                },
            )
            response.raise_for_status()
            user_data = response.json()
        except httpx.HTTPStatusError as e:
            logger.info("token_rejected", status=e.response.status_code)
            raise AuthenticationError(INVALID_TOKEN_MESSAGE) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("identity_provider_error", error=str(e))
            raise AuthenticationError(INVALID_TOKEN_MESSAGE) from e

        account_id = user_data.get("id") if isinstance(user_data, dict) else None
        if not account_id:
            raise AuthenticationError(INVALID_TOKEN_MESSAGE)

        return AuthenticatedUser(account_id=str(account_id), email=user_data.get("email"))

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
