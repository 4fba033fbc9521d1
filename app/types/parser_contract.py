"""Pydantic models for the two external lookups the reminder core consumes:
intent resolution (free text → reminder intent) and current weather.

These classes are intentionally framework-agnostic so they can be reused by
services, the dispatcher and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

Intent = Literal["create_reminder", "other"]


class ParsedReminder(BaseModel):
    """Structured result of the intent-resolution service."""

    intent: Intent
    reminder_message: Optional[str] = None
    remind_at: Optional[datetime] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("reminder_message")
    def _strip_message(cls, v):  # noqa: N805
        if v is None:
            return None
        v = v.strip()
        return v or None

    def is_actionable(self, threshold: float) -> bool:
        """True only for a confident create-reminder intent with message and time."""
        return (
            self.intent == "create_reminder"
            and self.reminder_message is not None
            and self.remind_at is not None
            and self.confidence >= threshold
        )


class WeatherReport(BaseModel):
    """Current conditions for one city, in metric units."""

    city: str
    temp_c: float
    feels_like_c: Optional[float] = None
    description: str
    humidity: Optional[int] = None

    def summary(self) -> str:
        feels = self.feels_like_c if self.feels_like_c is not None else self.temp_c
        humidity = self.humidity if self.humidity is not None else "N/A"
        return (
            f"Weather in {self.city} now: {round(self.temp_c)}°C, {self.description}. "
            f"Feels like {round(feels)}°C. Humidity: {humidity}%."
        )
