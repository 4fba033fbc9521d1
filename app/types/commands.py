"""Classifier output: which command an inbound message is, plus its arguments."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class CommandIntent(str, enum.Enum):
    WEATHER_CITY = "weather_city"            # reply to a "which city?" prompt
    SNOOZE = "snooze"
    WEATHER_SUBSCRIBE_CITY = "weather_subscribe_city"
    WEATHER_SUBSCRIBE = "weather_subscribe"
    WEATHER_CANCEL = "weather_cancel"
    CANCEL_RECURRING = "cancel_recurring"
    CANCEL_ONE_TIME = "cancel_one_time"
    HELP = "help"
    LIST = "list"
    GREETING = "greeting"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class Command:
    intent: CommandIntent
    text: str
    lower: str
    args: dict[str, Any] = field(default_factory=dict)
    # Set when the message is recognisably a command but its arguments are malformed.
    error: Optional[str] = None
    looks_like_reminder: bool = False
