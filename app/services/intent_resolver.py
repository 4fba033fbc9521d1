"""
LLM-powered intent resolution.

Turns one free-text SMS into a ``ParsedReminder``: is this a request to
create a reminder, what should the reminder say, and when should it fire.
Every failure mode (no API key, transport error, non-JSON or off-schema
output) yields ``None``; callers treat that as "not confident".
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError as SchemaError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.types.parser_contract import ParsedReminder
from config import settings

_LOGGER = logging.getLogger(__name__)

Resolver = Callable[[str, datetime, str], Awaitable[Optional[ParsedReminder]]]

# ──────────────────────────────────────────────────────────────────────────
# Prompt
# ──────────────────────────────────────────────────────────────────────────

_SYSTEM_PROMPT = (
    "You read SMS messages sent to a reminder bot and decide whether the user "
    "is asking to CREATE A REMINDER. "
    "Return ONLY a JSON object, no prose, with exactly these keys:\n"
    '{"intent": "create_reminder" | "other", "reminder_message": string | null, '
    '"remind_at": string | null, "confidence": number}\n\n'
    "reminder_message: a short description of what to remind about, WITHOUT "
    '"remind me", "please" or any date/time words. '
    '"remind me to submit assignment at 12:50 today" -> "submit assignment".\n'
    "remind_at: one ISO 8601 datetime WITH offset in the user's timezone, "
    "always in the FUTURE. Handle relative phrases (\"in 10 mins\", \"in 2 hours\"), "
    'relative days ("today at 7", "tomorrow morning", "day after tomorrow at 8 pm") '
    'and explicit dates ("on 5th May", "on 05/05/2026 at 9 pm"). '
    "A bare time means today if still ahead, otherwise tomorrow. "
    "A bare date means 09:00 on that date. "
    "For recurring requests (every day, monthly) give the FIRST upcoming occurrence.\n"
    "confidence: 0 to 1.\n"
    'If it is not a reminder request use intent "other" with null fields.'
)

_USER_TEMPLATE = (
    "User message:\n{text}\n\n"
    "Current datetime (ISO): {now}\n"
    "User timezone: {timezone}"
)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


# Retry only on transport / rate-limit / backend errors
RETRY_ERRORS = (
    openai.APIStatusError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.APITimeoutError,
)


@retry(
    wait=wait_random_exponential(multiplier=1, max=10),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(RETRY_ERRORS),
    reraise=True,
)
async def _call_openai(text: str, now: datetime, timezone: str) -> str:
    response = await _get_client().chat.completions.create(
        model=settings.OPENAI_MODEL,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": _SYSTEM_PROMPT},
            {
                "role": "user",
                "content": _USER_TEMPLATE.format(
                    text=text, now=now.isoformat(), timezone=timezone
                ),
            },
        ],
        timeout=settings.OPENAI_TIMEOUT,
    )
    return response.choices[0].message.content or ""


def parse_response(raw: str) -> Optional[ParsedReminder]:
    """Validate raw model output; malformed output is ``None``, never an error."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        _LOGGER.warning("Intent resolver returned non-JSON: %r", raw[:200] if raw else raw)
        return None
    if not isinstance(data, dict) or not data.get("intent"):
        _LOGGER.warning("Intent resolver returned unexpected payload: %r", data)
        return None
    try:
        return ParsedReminder.model_validate(data)
    except SchemaError as exc:
        _LOGGER.warning("Intent resolver output failed validation: %s", exc)
        return None


# ──────────────────────────────────────────────────────────────────────────
# Public entry-point
# ──────────────────────────────────────────────────────────────────────────

async def resolve(text: str, now: datetime, timezone: str) -> Optional[ParsedReminder]:
    """Ask the model what *text* means at *now* in *timezone*."""
    if not settings.OPENAI_API_KEY:
        _LOGGER.debug("OPENAI_API_KEY not set; skipping intent resolution")
        return None
    try:
        raw = await _call_openai(text, now, timezone)
    except openai.OpenAIError as exc:
        _LOGGER.warning("Intent resolution failed: %s", exc)
        return None
    parsed = parse_response(raw)
    _LOGGER.info("Intent resolved: %s", parsed.model_dump() if parsed else None)
    return parsed
