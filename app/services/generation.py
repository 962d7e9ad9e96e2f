"""
Prompt Generator - rewrites prompts through the OpenAI chat completions API.
"""

import time

from openai import AsyncOpenAI, OpenAIError
from structlog import get_logger

from app.exceptions import GenerationError
from app.models.api import PromptMode
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.prompt_templates import (
    clean_output,
    generation_params,
    system_prompt,
    user_message,
)

logger = get_logger(__name__)


class PromptGenerator:
    """
    Language model collaborator.

    Without an API key the generator stays constructed but every call fails
    with GenerationError, which the caller reports after credits were taken.
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None and api_key:
            client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def generate(
        self,
        mode: PromptMode,
        original_prompt: str,
        previous_prompt: str | None = None,
    ) -> str:
        """
        Rewrite a prompt in the given mode and return the cleaned text.

        Raises:
            GenerationError: not configured, provider failure or empty output
        """
        if self._client is None:
            raise GenerationError("OpenAI API not configured")

        params = generation_params(mode)
        start = time.perf_counter()
        success = False
        try:
            with trace_operation("prompt_generation", mode=mode.value, model=params.model):
                completion = await self._client.chat.completions.create(
                    model=params.model,
                    messages=[
                        {"role": "system", "content": system_prompt(mode)},
                        {
                            "role": "user",
                            "content": user_message(mode, original_prompt, previous_prompt),
                        },
                    ],
                    max_tokens=params.max_tokens,
                    temperature=params.temperature,
                )
            content = completion.choices[0].message.content if completion.choices else None
            output = clean_output(content or "")
            if not output:
                raise GenerationError("No improved prompt received from OpenAI")
            success = True
            return output
        except OpenAIError as e:
            logger.error("generation_failed", mode=mode.value, error=str(e))
            raise GenerationError(f"OpenAI API error: {e}") from e
        finally:
            metrics.record_generation(mode.value, success, time.perf_counter() - start)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
