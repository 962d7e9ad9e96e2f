"""
Prompt Templates - system prompts and model parameters per rewrite mode.
"""

import re

from app.config import settings
from app.models.api import PromptMode
from app.models.domain import GenerationParams

DEFAULT_TEMPERATURE = 0.35
DEFAULT_MAX_TOKENS = 250
FOLLOWUP_MAX_TOKENS = 300

SYSTEM_PROMPT_IMPROVE = """You are a professional prompt editor.

Rewrite the user's input into a clear, high-quality AI prompt using this structure:
- Role or perspective
- Specific task or action
- Relevant context or assumptions
- Desired output format
- Constraints or quality guidelines
- Clear success goal

Example:
Input: "help me with instagram content"
Improved:
"You are a content strategist. Create a 7-day Instagram content plan for beginner freelancers struggling to get clients. Return the output as a table with hooks, post ideas, and CTAs. Keep hooks under 8 words. The goal is to attract inbound DMs."

Rules:
- Preserve the user's original intent.
- If details are missing, make reasonable assumptions instead of asking questions.
- Keep the prompt concise and practical.
- Do NOT answer the prompt.
- Do NOT explain your changes.

Return ONLY the improved prompt text."""

SYSTEM_PROMPT_REFINE = """You are a prompt refinement assistant.

Take the user's prompt and produce a clearer, more specific, and higher-quality version.

Rules:
- Preserve the user's original intent and meaning
- Make the prompt more precise and actionable
- Add clarity where needed without changing the core purpose
- Improve specificity and remove ambiguity
- Keep the prompt concise and practical
- Do NOT answer the prompt
- Do NOT add explanations
- Do NOT change the fundamental task or goal

Return ONLY the refined prompt text."""

SYSTEM_PROMPT_FOLLOWUP = """You are rewriting a follow-up prompt in an ongoing conversation.

Rewrite the user's input so it clearly continues the previous task or discussion.

Rules:
- Preserve the original topic, scope, and criteria.
- Do NOT introduce a new role, task, or format unless explicitly requested.
- Do NOT generalize or reset the task.
- Make the follow-up self-contained and unambiguous.
- Keep it concise.

Return ONLY the rewritten follow-up prompt."""

SYSTEM_PROMPTS: dict[PromptMode, str] = {
    PromptMode.IMPROVE: SYSTEM_PROMPT_IMPROVE,
    PromptMode.REFINE: SYSTEM_PROMPT_REFINE,
    PromptMode.FOLLOWUP: SYSTEM_PROMPT_FOLLOWUP,
}

_LEADING_FENCE = re.compile(r"^```\w*\n?")
_TRAILING_FENCE = re.compile(r"\n?```$")


def system_prompt(mode: PromptMode) -> str:
    return SYSTEM_PROMPTS[mode]


def user_message(mode: PromptMode, original_prompt: str, previous_prompt: str | None = None) -> str:
    """
    Build the user turn for a mode.

    Followup wraps the current input, and the previous message when given,
    so the model sees the conversation it continues.
    """
    current = original_prompt.strip()
    if mode is not PromptMode.FOLLOWUP:
        return current

    previous = previous_prompt.strip() if previous_prompt else ""
    if previous:
        return f'Previous user message: "{previous}"\n\nCurrent user input: "{current}"'
    return f'Current user input: "{current}"'


def generation_params(mode: PromptMode) -> GenerationParams:
    return GenerationParams(
        model=settings.openai_model,
        temperature=DEFAULT_TEMPERATURE,
        max_tokens=FOLLOWUP_MAX_TOKENS if mode is PromptMode.FOLLOWUP else DEFAULT_MAX_TOKENS,
    )


def clean_output(text: str) -> str:
    """
    Normalize model output.

    Trims whitespace, strips one pair of surrounding quotes and removes
    markdown code fences.
    """
    cleaned = text.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in ('"', "'"):
        cleaned = cleaned[1:-1]
    cleaned = _LEADING_FENCE.sub("", cleaned)
    cleaned = _TRAILING_FENCE.sub("", cleaned)
    return cleaned.strip()
