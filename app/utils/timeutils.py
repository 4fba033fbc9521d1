"""Wall-clock helpers used by the guided flow, lifecycle engine and dispatcher.

All comparisons that talk about "a day", "a month" or "HH:MM" are made in the
application timezone; persisted timestamps are UTC and converted on the way in.
"""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from config import settings

Clock = Callable[[], datetime]

# Longest offset accepted from "snooze ..." and "in N minutes/hours".
MAX_OFFSET_MINUTES = 366 * 24 * 60

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

# Guided-flow clock formats, tried in order; partial matches are rejected.
_CLOCK_FORMATS = (
    # HH:mm / H:mm
    (re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$"), False),
    # h:mm A / h:mma
    (re.compile(r"^(0?[1-9]|1[0-2]):([0-5]\d) ?([ap]m)$", re.IGNORECASE), True),
)


def app_timezone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or settings.DEFAULT_TIMEZONE)


def system_clock(tz: ZoneInfo | None = None) -> Clock:
    """Return a zero-argument clock bound to *tz* (application timezone by default)."""
    zone = tz or app_timezone()
    return lambda: datetime.now(tz=zone)


def hhmm(dt: datetime) -> str:
    """Format *dt* as a 24-hour ``HH:MM`` string in its own timezone."""
    return dt.strftime("%H:%M")


def is_valid_hhmm(value: str) -> bool:
    return bool(_HHMM_RE.match(value or ""))


def is_same_day(a: datetime, b: datetime, tz: ZoneInfo | None = None) -> bool:
    zone = tz or app_timezone()
    return a.astimezone(zone).date() == b.astimezone(zone).date()


def is_same_year_month(a: datetime, b: datetime, tz: ZoneInfo | None = None) -> bool:
    zone = tz or app_timezone()
    la, lb = a.astimezone(zone), b.astimezone(zone)
    return (la.year, la.month) == (lb.year, lb.month)


def parse_clock_time(text: str) -> Optional[time]:
    """Strictly parse ``14:56``, ``9:36``, ``9:36 PM`` or ``9:36am``.

    Returns ``None`` for anything else, including ``9``, ``9pm`` and ``25:00``.
    """
    candidate = (text or "").strip()
    for pattern, twelve_hour in _CLOCK_FORMATS:
        m = pattern.match(candidate)
        if not m:
            continue
        hour, minute = int(m.group(1)), int(m.group(2))
        if twelve_hour:
            hour = hour % 12
            if m.group(3).lower() == "pm":
                hour += 12
        return time(hour=hour, minute=minute)
    return None


def next_occurrence(at: time, now: datetime) -> datetime:
    """Place *at* on today's date; if that instant has passed, move it to tomorrow.

    The roll-forward is exactly one day, never more.
    """
    candidate = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if candidate < now:
        candidate += timedelta(days=1)
    return candidate


def format_timestamp(dt: datetime, tz: ZoneInfo | None = None) -> str:
    """User-facing ``YYYY-MM-DD HH:MM`` rendering in the application timezone."""
    return dt.astimezone(tz or app_timezone()).strftime("%Y-%m-%d %H:%M")
