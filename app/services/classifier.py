"""Command classifier.

Rules are an ordered table of ``(intent, pattern, extractor)`` evaluated top
to bottom; the first matching row wins. Patterns are matched against the
trimmed text case-insensitively, so captured arguments (the city name) keep
the user's original casing.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Optional

from app.types.commands import Command, CommandIntent
from app.utils.timeutils import MAX_OFFSET_MINUTES

SNOOZE_UNITS: dict[str, str] = {
    "m": "minute",
    "min": "minute",
    "mins": "minute",
    "minute": "minute",
    "minutes": "minute",
    "h": "hour",
    "hr": "hour",
    "hrs": "hour",
    "hour": "hour",
    "hours": "hour",
}

SNOOZE_USAGE = 'Usage: "snooze <amount> <unit>", for example "snooze 10 minutes" or "snooze 2 hours".'

_SNOOZE_ARGS_RE = re.compile(r"^(\S+?)\s*([a-z]+)$")

Extractor = Callable[[re.Match], tuple[dict[str, Any], Optional[str]]]


def parse_snooze_args(rest: str) -> tuple[dict[str, Any], Optional[str]]:
    """Parse the part after ``snooze``; returns ``(args, error)``."""
    rest = (rest or "").strip().lower()
    if not rest:
        return {}, SNOOZE_USAGE
    m = _SNOOZE_ARGS_RE.match(rest)
    if not m:
        return {}, SNOOZE_USAGE
    raw_amount, raw_unit = m.group(1), m.group(2)
    try:
        amount = float(raw_amount)
    except ValueError:
        return {}, f'"{raw_amount}" is not a number. {SNOOZE_USAGE}'
    if amount != amount or amount <= 0 or amount == float("inf"):
        return {}, f"The snooze amount must be a positive number. {SNOOZE_USAGE}"
    unit = SNOOZE_UNITS.get(raw_unit)
    if unit is None:
        return {}, f'"{raw_unit}" is not a unit I know (use minutes or hours). {SNOOZE_USAGE}'
    minutes = amount * 60 if unit == "hour" else amount
    if minutes > MAX_OFFSET_MINUTES:
        return {}, f"I can only snooze for up to a year. {SNOOZE_USAGE}"
    return {"amount": amount, "unit": unit, "minutes": minutes}, None


def _no_args(_m: re.Match) -> tuple[dict[str, Any], Optional[str]]:
    return {}, None


def _snooze(m: re.Match) -> tuple[dict[str, Any], Optional[str]]:
    return parse_snooze_args(m.group("rest") or "")


def _city(m: re.Match) -> tuple[dict[str, Any], Optional[str]]:
    return {"city": m.group("city").strip()}, None


def _reminder_id(m: re.Match) -> tuple[dict[str, Any], Optional[str]]:
    return {"reminder_id": int(m.group("id"))}, None


def _rule(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


RULES: tuple[tuple[CommandIntent, re.Pattern, Extractor], ...] = (
    (CommandIntent.SNOOZE, _rule(r"^snooze(?:\s+(?P<rest>.*))?$"), _snooze),
    (CommandIntent.WEATHER_SUBSCRIBE_CITY, _rule(r"^subscribe\s+weather\s+(?P<city>\S.*)$"), _city),
    (CommandIntent.WEATHER_SUBSCRIBE, _rule(r"^subscribe\s+weather$"), _no_args),
    (CommandIntent.WEATHER_CANCEL, _rule(r"^(?:cancel|unsubscribe)\s+weather$"), _no_args),
    (CommandIntent.CANCEL_RECURRING, _rule(r"^cancel\s+recurring\s+(?P<id>\d+)$"), _reminder_id),
    (CommandIntent.CANCEL_ONE_TIME, _rule(r"^cancel\s+(?P<id>\d+)$"), _reminder_id),
    (CommandIntent.HELP, _rule(r"^(?:help|menu)$"), _no_args),
    (CommandIntent.LIST, _rule(r"^list(?:\s+reminders)?$"), _no_args),
    (CommandIntent.GREETING, _rule(r"^(?:hi|hello|hey)$"), _no_args),
)


def looks_like_reminder(lower: str) -> bool:
    return "remind" in lower


def classify(text: str, awaiting_city: bool = False) -> Command:
    """Classify one inbound message.

    With *awaiting_city* set, the whole message is a city name and no rule
    is consulted.
    """
    text = (text or "").strip()
    lower = text.lower()
    if awaiting_city:
        return Command(CommandIntent.WEATHER_CITY, text, lower, {"city": text})

    for intent, pattern, extract in RULES:
        m = pattern.match(text)
        if m:
            args, error = extract(m)
            return Command(intent, text, lower, args, error)

    return Command(
        CommandIntent.UNCLASSIFIED,
        text,
        lower,
        looks_like_reminder=looks_like_reminder(lower),
    )
