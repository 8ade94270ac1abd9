"""LLM market-impact classification with forced structured output."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import openai
from openai import AsyncOpenAI

from newsimpact.contracts.impact_result import (
    IMPACT_CATEGORIES,
    IMPACT_SCHEMA,
    ImpactFields,
    validate_impact_payload,
)
from newsimpact.errors import ClassificationError
from newsimpact.utils.retry import RetryPolicy
from newsimpact.utils.text import truncate_text

logger = logging.getLogger(__name__)

IMPACT_TOOL_NAME = "set_news_impact"

IMPACT_TOOL = {
    "type": "function",
    "function": {
        "name": IMPACT_TOOL_NAME,
        "description": "Classify market impact for a news article",
        "parameters": IMPACT_SCHEMA,
    },
}

SYSTEM_PROMPT = " ".join(
    [
        "You are a financial-news impact classifier.",
        "Always respond by calling the provided function.",
        "Do not return free-form text.",
        "impact must be an integer 1-10.",
        "direction must be one of positive|negative|mixed|unclear.",
        f"category must be one of {'|'.join(IMPACT_CATEGORIES)}.",
        "points must contain 3-6 concise strings.",
        "confidence must be a number between 0 and 1.",
    ]
)


def is_retryable_openai_error(error: BaseException) -> bool:
    """Transport-level failures only: rate limits, timeouts, connection errors, 5xx."""
    if isinstance(error, (openai.RateLimitError, openai.APIConnectionError, asyncio.TimeoutError)):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code == 429 or error.status_code >= 500
    return False


def build_user_prompt(headline: str, content: str) -> str:
    return json.dumps(
        {
            "headline": headline,
            "content": content,
            "required_output": {
                "impact": "integer 1-10",
                "direction": "positive|negative|mixed|unclear",
                "category": list(IMPACT_CATEGORIES),
                "points": "array of 3-6 short bullet strings",
                "confidence": "number 0-1",
            },
        },
        indent=2,
    )


class ImpactClassifier:
    def __init__(
        self,
        *,
        model: str,
        max_chars: int,
        retry_policy: RetryPolicy,
        api_key: Optional[str] = None,
        client: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if client is None:
            if not api_key:
                raise ValueError("OPENAI_API_KEY is required for pipeline AI categorization")
            client = AsyncOpenAI(api_key=api_key)
        self.client = client
        self.model = model
        self.max_chars = max_chars
        self.retry_policy = retry_policy
        self._sleep = sleep

    async def _request_tool_arguments(self, user_prompt: str) -> str:
        completion = await self.client.chat.completions.create(
            model=self.model,
            temperature=0.1,
            tools=[IMPACT_TOOL],
            tool_choice={"type": "function", "function": {"name": IMPACT_TOOL_NAME}},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
        )
        choices = getattr(completion, "choices", None) or []
        message = choices[0].message if choices else None
        tool_calls = (getattr(message, "tool_calls", None) or []) if message is not None else []
        if not tool_calls or getattr(tool_calls[0], "type", None) != "function":
            raise ClassificationError("LLM response missing function tool call")
        call = tool_calls[0].function
        if call.name != IMPACT_TOOL_NAME:
            raise ClassificationError(f"LLM called unexpected function: {call.name}")
        if not call.arguments:
            raise ClassificationError("LLM function call has no arguments")
        return call.arguments

    async def classify(self, headline: str, content: str) -> ImpactFields:
        user_prompt = build_user_prompt(headline, truncate_text(content, self.max_chars))
        raw_args = await self.retry_policy.run(
            lambda: self._request_tool_arguments(user_prompt),
            is_retryable=is_retryable_openai_error,
            sleep=self._sleep,
            label="impact classification",
        )
        try:
            payload = json.loads(raw_args)
        except json.JSONDecodeError as e:
            raise ClassificationError(f"LLM function arguments were not valid JSON: {e}") from e
        errors = validate_impact_payload(payload)
        if errors:
            raise ClassificationError("LLM output failed schema validation: " + "; ".join(errors))
        return ImpactFields.from_payload(payload)
