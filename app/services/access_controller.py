"""
Access Controller - per-request credit and tier enforcement.

Drives one prompt rewrite through
UNAUTHENTICATED -> IDENTIFIED -> TIER_CHECKED -> BALANCE_RESERVED -> COMPLETED,
or to DENIED from any step. Every outcome is returned, never raised; the
HTTP layer maps it to a status code and body.

Ordering matters:
- request validation happens before any identity work
- followup identity and Pro checks happen before any balance is touched
- credits are reserved before generation, and are not refunded if
  generation fails afterwards
"""

from structlog import get_logger

from app.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    AuthorizationError,
    GenerationError,
    InsufficientCreditsError,
    InvalidRequestError,
    StorageError,
)
from app.models.api import DenialReason, IdentityTier, PromptMode, RequestState
from app.models.domain import (
    UNLIMITED_CREDITS,
    AuthenticatedUser,
    PromptCommand,
    PromptCompleted,
    PromptDenied,
    PromptOutcome,
    credit_cost,
)
from app.observability.metrics import metrics
from app.services.anonymous_credits import AnonymousCreditPool
from app.services.credit_ledger import AccountCreditLedger
from app.services.generation import PromptGenerator
from app.services.history import PromptHistoryService
from app.services.identity import IdentityVerifier
from app.services.tier import TierResolver

logger = get_logger(__name__)

# Modes only available to authenticated Pro accounts
GATED_MODES = frozenset({PromptMode.FOLLOWUP})

MSG_INVALID_MODE = "Invalid mode. Must be: improve, refine, or followup"
MSG_PROMPT_REQUIRED = "original_prompt is required"
MSG_INVALID_TOKEN = "Invalid or expired token"
MSG_AUTH_REQUIRED = "Authentication required. Please log in."
MSG_PRO_REQUIRED = "Follow-up is a Pro feature. Upgrade to Pro to use this feature."
MSG_NO_CREDITS_ANONYMOUS = "No credits remaining. Sign up to get more credits."
MSG_NO_CREDITS_FREE = (
    "No credits remaining. You've used your 3 daily credits. "
    "Sign up to get 10 bonus credits or go Pro for unlimited access."
)
MSG_STORAGE_FAILURE = "Failed to process credits"


def parse_mode(value: str | PromptMode) -> PromptMode:
    """
    Resolve a rewrite mode.

    Raises:
        InvalidRequestError: unknown mode
    """
    try:
        return PromptMode(value)
    except ValueError as e:
        raise InvalidRequestError(MSG_INVALID_MODE) from e


class AccessController:
    """
    Resolves identity and tier, reserves credits, then generates.

    Usage:
        controller = AccessController(pool, verifier, generator, ledger, tiers, history)
        outcome = await controller.handle(command)
    """

    def __init__(
        self,
        pool: AnonymousCreditPool,
        identity: IdentityVerifier,
        generator: PromptGenerator,
        ledger: AccountCreditLedger,
        tiers: TierResolver,
        history: PromptHistoryService,
    ) -> None:
        self.pool = pool
        self.identity = identity
        self.generator = generator
        self.ledger = ledger
        self.tiers = tiers
        self.history = history

    async def handle(self, command: PromptCommand) -> PromptOutcome:
        """Run one prompt request to a terminal outcome."""
        state = RequestState.UNAUTHENTICATED

        try:
            mode = parse_mode(command.mode)
        except InvalidRequestError as e:
            return self._deny(400, DenialReason.INVALID_REQUEST, e.message, state, command.mode)

        if not command.original_prompt or not command.original_prompt.strip():
            return self._deny(400, DenialReason.INVALID_REQUEST, MSG_PROMPT_REQUIRED, state, mode)

        gated = mode in GATED_MODES

        # Identity
        user: AuthenticatedUser | None = None
        if command.token:
            try:
                user = await self.identity.verify_token(command.token)
            except AuthenticationError as e:
                if gated:
                    return self._deny(401, DenialReason.INVALID_TOKEN, MSG_INVALID_TOKEN, state, mode)
                logger.info("token_rejected_using_anonymous", mode=mode.value, error=e.message)

        state = RequestState.IDENTIFIED
        if gated and user is None:
            return self._deny(401, DenialReason.AUTH_REQUIRED, MSG_AUTH_REQUIRED, state, mode)

        # Tier and reservation
        cost = credit_cost(mode)
        tier = IdentityTier.ANONYMOUS
        try:
            if user is None:
                state = RequestState.TIER_CHECKED
                try:
                    remaining = self.pool.reserve(command.client_key, cost)
                except InsufficientCreditsError as e:
                    metrics.record_reservation(tier.value, mode.value, success=False)
                    return self._deny(
                        402,
                        DenialReason.INSUFFICIENT_CREDITS,
                        MSG_NO_CREDITS_ANONYMOUS,
                        state,
                        mode,
                        credits_remaining=e.balance,
                    )
                metrics.record_consumption(tier.value, "anonymous", cost)
            else:
                if gated:
                    try:
                        await self.tiers.require_pro(user.account_id)
                    except AuthorizationError:
                        state = RequestState.TIER_CHECKED
                        return self._deny(
                            403, DenialReason.PRO_REQUIRED, MSG_PRO_REQUIRED, state, mode
                        )
                    is_pro = True
                else:
                    is_pro = await self.tiers.is_pro(user.account_id)
                tier = IdentityTier.PRO if is_pro else IdentityTier.FREE
                state = RequestState.TIER_CHECKED

                if is_pro:
                    remaining = UNLIMITED_CREDITS
                else:
                    await self.ledger.ensure_account(user.account_id, user.email)
                    try:
                        result = await self.ledger.deduct(user.account_id, cost)
                    except InsufficientCreditsError as e:
                        metrics.record_reservation(tier.value, mode.value, success=False)
                        return self._deny(
                            402,
                            DenialReason.INSUFFICIENT_CREDITS,
                            MSG_NO_CREDITS_FREE,
                            state,
                            mode,
                            credits_remaining=e.balance,
                        )
                    metrics.record_consumption(tier.value, result.source.value, cost)
                    remaining = result.remaining_bonus
        except (StorageError, AccountNotFoundError) as e:
            logger.error("credit_reservation_failed", mode=mode.value, error=str(e))
            metrics.record_error("storage", "reserve")
            return self._deny(500, DenialReason.STORAGE_ERROR, MSG_STORAGE_FAILURE, state, mode)

        state = RequestState.BALANCE_RESERVED
        metrics.record_reservation(tier.value, mode.value, success=True)

        # Generation
        try:
            output = await self.generator.generate(
                mode, command.original_prompt, command.previous_prompt
            )
        except GenerationError as e:
            # Reservation stands
            return self._deny(500, DenialReason.GENERATION_ERROR, e.message, state, mode)

        if user is not None:
            await self._record_prompt(user, command.original_prompt.strip(), output)

        logger.info(
            "prompt_completed",
            mode=mode.value,
            tier=tier.value,
            credits_remaining=remaining,
        )
        return PromptCompleted(output=output, credits_remaining=remaining, tier=tier)

    async def _record_prompt(self, user: AuthenticatedUser, input_text: str, output: str) -> None:
        try:
            await self.history.append_prompt(user.account_id, input_text, output)
        except (StorageError, InvalidRequestError) as e:
            # Credits are already taken; the rewrite is still returned
            logger.warning("prompt_record_failed", account_id=user.account_id, error=str(e))

    @staticmethod
    def _deny(
        status_code: int,
        reason: DenialReason,
        message: str,
        reached: RequestState,
        mode: PromptMode | str,
        credits_remaining: int | None = None,
    ) -> PromptDenied:
        mode_label = mode.value if isinstance(mode, PromptMode) else str(mode)
        metrics.record_denial(reason.value, mode_label)
        logger.info(
            "prompt_denied",
            reason=reason.value,
            status_code=status_code,
            reached=reached.value,
            mode=mode_label,
        )
        return PromptDenied(
            status_code=status_code,
            reason=reason,
            message=message,
            reached=reached,
            credits_remaining=credits_remaining,
        )
