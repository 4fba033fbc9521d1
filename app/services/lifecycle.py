"""Reminder lifecycle: turning a resolved intent into persisted records.

``resolve_timestamp`` tries the intent-resolution service first and falls
back to a small relative-time parser ("in 10 minutes"). The ``create_*``
functions persist a record and bump the owner's usage counter in one
transaction; the ``cancel_*`` functions raise ``NotFoundError`` for ids the
user does not own.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, Optional

import db
from app.errors import NotFoundError, ValidationError
from app.services import intent_resolver
from app.services.intent_resolver import Resolver
from app.utils.timeutils import MAX_OFFSET_MINUTES, app_timezone, hhmm, is_valid_hhmm
from config import settings
from db.models import OneTimeReminder, RecurrenceKind, RecurringReminder, User

_LOGGER = logging.getLogger(__name__)

MONTHLY_PHRASES = ("every month", "each month", "monthly")
DAILY_PHRASES = ("every day", "everyday", "daily")

_RELATIVE_RE = re.compile(r"\bin\s+(\d+)\s*(minutes|minute|mins|min|hours|hour)\b", re.IGNORECASE)
_TODAY_RE = re.compile(r"\btoday\b", re.IGNORECASE)
_LEAD_RE = re.compile(r"^\s*remind\s+me(?:\s+to)?\b", re.IGNORECASE)
_SPACES_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ResolvedReminder:
    message: str
    fire_at: datetime
    source: Literal["nlp", "relative"]


# ──────────────────────────────────────────────────────────────────────────
# Creation
# ──────────────────────────────────────────────────────────────────────────

async def create_one_time(user: User, message: str, when: datetime) -> OneTimeReminder:
    if not message or not message.strip():
        raise ValidationError("A reminder needs a message.")
    if when.tzinfo is None:
        raise ValidationError("A reminder time must include a timezone.")
    reminder = await db.insert_one_time_reminder(user.id, message.strip(), when)
    _LOGGER.info(
        "One-time reminder %s stored for %s at %s", reminder.id, user.address, when.isoformat()
    )
    return reminder


async def create_recurring(
    user: User,
    message: str,
    kind: RecurrenceKind,
    time_of_day: str,
    day_of_month: int | None = None,
) -> RecurringReminder:
    if not message or not message.strip():
        raise ValidationError("A reminder needs a message.")
    if not is_valid_hhmm(time_of_day):
        raise ValidationError(f'"{time_of_day}" is not a valid HH:MM time.')
    if kind == RecurrenceKind.MONTHLY:
        if day_of_month is None:
            raise ValidationError("A monthly reminder needs a day of the month.")
        if not 1 <= day_of_month <= 31:
            raise ValidationError("The day of the month must be between 1 and 31.")
    elif day_of_month is not None:
        raise ValidationError("A daily reminder cannot have a day of the month.")

    reminder = await db.insert_recurring_reminder(
        user.id, message.strip(), kind, time_of_day, day_of_month
    )
    _LOGGER.info(
        "Recurring %s reminder %s stored for %s at %s",
        kind.value, reminder.id, user.address, time_of_day,
    )
    return reminder


async def create_from_text(
    user: User, resolved: ResolvedReminder, lower_text: str
) -> OneTimeReminder | RecurringReminder:
    """Persist *resolved* as recurring or one-time depending on the phrasing."""
    kind = detect_recurrence(lower_text)
    if kind is None:
        return await create_one_time(user, resolved.message, resolved.fire_at)
    local = resolved.fire_at.astimezone(app_timezone())
    return await create_recurring(
        user,
        resolved.message,
        kind,
        hhmm(local),
        local.day if kind == RecurrenceKind.MONTHLY else None,
    )


async def cancel_one_time(user: User, reminder_id: int) -> None:
    if not await db.delete_one_time_reminder(user.id, reminder_id):
        raise NotFoundError(f"I could not find reminder {reminder_id}.")
    _LOGGER.info("Reminder %s cancelled by %s", reminder_id, user.address)


async def cancel_recurring(user: User, reminder_id: int) -> None:
    if not await db.deactivate_recurring_reminder(user.id, reminder_id):
        raise NotFoundError(f"I could not find recurring reminder {reminder_id}.")
    _LOGGER.info("Recurring reminder %s cancelled by %s", reminder_id, user.address)


# ──────────────────────────────────────────────────────────────────────────
# Parsing
# ──────────────────────────────────────────────────────────────────────────

def detect_recurrence(lower_text: str) -> Optional[RecurrenceKind]:
    # Monthly wins when both phrasings appear.
    if any(p in lower_text for p in MONTHLY_PHRASES):
        return RecurrenceKind.MONTHLY
    if any(p in lower_text for p in DAILY_PHRASES):
        return RecurrenceKind.DAILY
    return None


def clean_message(text: str) -> str:
    """Strip "remind me (to)" lead-ins, "today" and relative-duration phrases."""
    cleaned = _RELATIVE_RE.sub(" ", text)
    cleaned = _TODAY_RE.sub(" ", cleaned)
    cleaned = _LEAD_RE.sub(" ", cleaned)
    return _SPACES_RE.sub(" ", cleaned).strip()


def parse_relative(text: str, now: datetime) -> Optional[ResolvedReminder]:
    """``... in 10 minutes`` / ``in 2 hours ...`` relative to *now*."""
    m = _RELATIVE_RE.search(text)
    if not m:
        return None
    amount = int(m.group(1))
    unit = m.group(2).lower()
    minutes = amount * 60 if unit.startswith("hour") else amount
    if minutes > MAX_OFFSET_MINUTES:
        _LOGGER.info("Ignoring relative offset of %s minutes: too far ahead", minutes)
        return None
    delta = timedelta(minutes=minutes)
    message = clean_message(text) or text.strip()
    return ResolvedReminder(message=message, fire_at=now + delta, source="relative")


def _accept(parsed, now: datetime, threshold: float) -> Optional[ResolvedReminder]:
    if parsed is None or not parsed.is_actionable(threshold):
        return None
    when = parsed.remind_at
    if when.tzinfo is None:
        when = when.replace(tzinfo=now.tzinfo or app_timezone())
    if when <= now:
        _LOGGER.info("Discarding resolved time %s: not in the future", when.isoformat())
        return None
    return ResolvedReminder(message=parsed.reminder_message, fire_at=when, source="nlp")


async def resolve_timestamp(
    now: datetime,
    text: str,
    *,
    resolver: Resolver | None = None,
    threshold: float | None = None,
    timezone: str | None = None,
) -> Optional[ResolvedReminder]:
    """Extract ``(message, fire_at)`` from free text, or ``None``."""
    resolver = resolver or intent_resolver.resolve
    threshold = settings.NLP_CONFIDENCE_THRESHOLD if threshold is None else threshold
    timezone = timezone or settings.DEFAULT_TIMEZONE

    try:
        parsed = await resolver(text, now, timezone)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Intent resolver raised, falling back to relative parser: %s", exc)
        parsed = None

    resolved = _accept(parsed, now, threshold)
    if resolved is not None:
        return resolved
    return parse_relative(text, now)
