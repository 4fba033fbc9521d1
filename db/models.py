"""ORM models for users, reminders and weather subscriptions.

Uses SQLAlchemy 2.0 typed declarative mappings.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp stored as UTC.

    Naive datetimes are rejected on write. Backends that hand back naive
    values (SQLite) get UTC re-attached on read.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            raise ValueError("timestamps must be timezone-aware")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class RecurrenceKind(str, enum.Enum):
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id:                    Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address:               Mapped[str] = mapped_column(String(64), unique=True, index=True)
    display_name:          Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reminder_count:        Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reminder_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_reminder_at:      Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at:            Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    @property
    def has_prior_reminders(self) -> bool:
        return (self.reminder_count or 0) > 0


class OneTimeReminder(Base):
    __tablename__ = "one_time_reminders"

    id:         Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id:    Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    message:    Mapped[str] = mapped_column(Text)
    fire_at:    Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class RecurringReminder(Base):
    __tablename__ = "recurring_reminders"
    __table_args__ = (
        CheckConstraint(
            "(kind = 'MONTHLY' AND day_of_month IS NOT NULL) OR "
            "(kind = 'DAILY' AND day_of_month IS NULL)",
            name="ck_recurring_day_of_month_kind",
        ),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)",
            name="ck_recurring_day_of_month_range",
        ),
    )

    id:                Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id:           Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    message:           Mapped[str] = mapped_column(Text)
    kind:              Mapped[RecurrenceKind] = mapped_column(Enum(RecurrenceKind, name="recurrence_kind"))
    time_of_day:       Mapped[str] = mapped_column(String(5), index=True)
    day_of_month:      Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active:            Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at:        Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class WeatherSubscription(Base):
    __tablename__ = "weather_subscriptions"

    id:           Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id:      Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True
    )
    city:         Mapped[str] = mapped_column(String(128))
    active:       Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at:   Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
