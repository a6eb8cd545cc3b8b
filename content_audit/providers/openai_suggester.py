"""
Generative content-edit suggestions via the OpenAI chat completions API.
"""

import asyncio
import json
import re
from typing import Any, Optional

import openai
from loguru import logger

from content_audit.config.settings import OPENAI_API_KEY, OPENAI_MODEL
from content_audit.errors import ExternalServiceError, PreconditionFailedError, ValidationError
from content_audit.providers.base import ChangeDraft, SuggestionRequest

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

_SYSTEM_PROMPT = (
    "You are an expert SEO content optimizer. You propose small, natural "
    "edits that work missing or underused terms into existing copy without "
    "keyword stuffing, and you answer with JSON only."
)


def build_prompt(request: SuggestionRequest) -> str:
    """Render the user prompt for one page."""
    missing = "\n".join(
        f'- "{t["term"]}" (importance: {float(t.get("importance", 0)):.2f})'
        for t in request.missing_terms
    )
    underused = "\n".join(
        f'- "{t["term"]}" (current: {t.get("current_count", 0)}, recommended: {t.get("target_count", 0)})'
        for t in request.underused_terms
    )
    if request.recommended_min_words is not None and request.recommended_max_words is not None:
        length_guidance = (
            f"Recommended: {request.recommended_min_words}-{request.recommended_max_words} words"
        )
    else:
        length_guidance = "No specific word count guidance"

    return f"""CONTEXT:
- Target keyword: "{request.keyword}"
- Language: {request.language_code}
- Current word count: {request.current_word_count}
- {length_guidance}

MISSING IMPORTANT TERMS:
{missing or "(none)"}

UNDERUSED TERMS:
{underused or "(none)"}

CURRENT CONTENT:
{request.page_text}

TASK:
Generate 3-7 minimal, natural content improvements that raise topical
coverage while keeping the original tone and message.

OUTPUT FORMAT (JSON array):
[
  {{
    "changeType": "insert|replace|delete",
    "location": {{"paragraphIndex": 2, "sentenceIndex": 1}},
    "originalText": "text to replace (replace and delete only)",
    "suggestedText": "new or replacement text",
    "reasoning": "why this improves the page"
  }}
]

location.paragraphIndex is 0-based; sentenceIndex is optional.
Return ONLY the JSON array."""


def parse_change_drafts(response_text: str) -> list[ChangeDraft]:
    """Turn a model response into validated drafts.

    Code fences and a ``{"changes": [...]}`` wrapper are tolerated. Items
    that fail validation are logged and dropped; a response with no JSON
    array at all raises ``ExternalServiceError``.
    """
    text = _FENCE_RE.sub("", (response_text or "").strip())

    parsed: Any
    try:
        parsed = json.loads(text)
    except ValueError:
        match = _ARRAY_RE.search(text)
        if not match:
            raise ExternalServiceError("AI response does not contain a JSON array")
        try:
            parsed = json.loads(match.group(0))
        except ValueError as exc:
            raise ExternalServiceError(f"AI response is not valid JSON: {exc}") from exc

    if isinstance(parsed, dict) and "changes" in parsed:
        parsed = parsed["changes"]
    if not isinstance(parsed, list):
        raise ExternalServiceError("AI response is not a JSON array")

    drafts: list[ChangeDraft] = []
    for index, raw in enumerate(parsed):
        try:
            drafts.append(ChangeDraft.from_dict(raw))
        except ValidationError as exc:
            logger.warning("Dropping AI change draft at index {}: {}", index, exc)
    return drafts


class OpenAISuggestionGenerator:
    """Draft content edits with an OpenAI chat model."""

    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        model: str = OPENAI_MODEL,
        timeout: float = 60.0,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.timeout = timeout
        if client is not None:
            self._client = client
        elif api_key:
            self._client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout)
        else:
            self._client = None

    async def generate(self, request: SuggestionRequest) -> list[ChangeDraft]:
        if self._client is None:
            raise PreconditionFailedError("OPENAI_API_KEY is not configured")

        logger.info("Generating auto-optimize suggestions for keyword '{}'", request.keyword)
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": _SYSTEM_PROMPT},
                        {"role": "user", "content": build_prompt(request)},
                    ],
                    max_tokens=2048,
                    temperature=0.7,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExternalServiceError("AI suggestion generation timed out") from exc
        except openai.OpenAIError as exc:
            raise ExternalServiceError(f"AI suggestion generation failed: {exc}") from exc

        text = response.choices[0].message.content or ""
        logger.debug("AI response: {}...", text[:200])
        drafts = parse_change_drafts(text)
        logger.info("Generated {} suggestions", len(drafts))
        return drafts
