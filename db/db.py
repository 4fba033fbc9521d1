"""
Async DB helpers for the reminder service.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.

Every helper opens its own short-lived session. Helpers that must write
more than one row do so inside a single ``session.begin()`` block, so
either every write commits or none does. SQLAlchemy errors are re-raised
as ``PersistenceError``.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from app.errors import PersistenceError
from db.models import (
    Base, OneTimeReminder, RecurrenceKind, RecurringReminder, User, WeatherSubscription,
)

# ──────────────────────────────────────────────────────────────────────
# 1. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("postgres://") or url.startswith("postgresql://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url


def configure_engine(url: str, **engine_kwargs: Any) -> AsyncEngine:
    """Bind the module to an explicit database URL (tests, scripts)."""
    global _engine, _session_maker
    _engine = create_async_engine(url, **engine_kwargs)
    _session_maker = None
    return _engine


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_async_engine(_build_url(), pool_size=5, max_overflow=5)
    return _engine


def get_session() -> AsyncSession:
    """Return a new session; use as ``async with get_session() as s``."""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker()


async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


# ──────────────────────────────────────────────────────────────────────
# 2. Users
# ──────────────────────────────────────────────────────────────────────

async def get_user(address: str) -> Optional[User]:
    try:
        async with get_session() as s:
            res = await s.execute(select(User).where(User.address == address))
            return res.scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"could not load user {address}") from exc


async def upsert_user(address: str, display_name: str | None = None) -> User:
    """Return the user for *address*, creating it on first contact.

    A non-empty *display_name* refreshes the stored one.
    """
    try:
        async with get_session() as s:
            async with s.begin():
                res = await s.execute(select(User).where(User.address == address))
                user = res.scalar_one_or_none()
                if user is None:
                    user = User(address=address, display_name=display_name, reminder_count=0)
                    s.add(user)
                elif display_name and display_name != user.display_name:
                    user.display_name = display_name
            return user
    except IntegrityError:
        # Lost a first-contact race against a concurrent insert for the same address.
        user = await get_user(address)
        if user is None:
            raise PersistenceError(f"could not create user {address}")
        return user
    except SQLAlchemyError as exc:
        raise PersistenceError(f"could not upsert user {address}") from exc


# ──────────────────────────────────────────────────────────────────────
# 3. Reminder creation (record + usage counter, one transaction)
# ──────────────────────────────────────────────────────────────────────

async def _bump_reminder_count(s: AsyncSession, user_id: int) -> None:
    await s.execute(
        update(User)
        .where(User.id == user_id)
        .values(reminder_count=User.reminder_count + 1)
    )


async def insert_one_time_reminder(user_id: int, message: str, fire_at: datetime) -> OneTimeReminder:
    try:
        async with get_session() as s:
            async with s.begin():
                reminder = OneTimeReminder(user_id=user_id, message=message, fire_at=fire_at)
                s.add(reminder)
                await s.flush()
                await _bump_reminder_count(s, user_id)
            return reminder
    except SQLAlchemyError as exc:
        raise PersistenceError("could not save one-time reminder") from exc


async def insert_recurring_reminder(
    user_id: int,
    message: str,
    kind: RecurrenceKind,
    time_of_day: str,
    day_of_month: int | None,
) -> RecurringReminder:
    try:
        async with get_session() as s:
            async with s.begin():
                reminder = RecurringReminder(
                    user_id=user_id,
                    message=message,
                    kind=kind,
                    time_of_day=time_of_day,
                    day_of_month=day_of_month,
                    active=True,
                )
                s.add(reminder)
                await s.flush()
                await _bump_reminder_count(s, user_id)
            return reminder
    except SQLAlchemyError as exc:
        raise PersistenceError("could not save recurring reminder") from exc


# ──────────────────────────────────────────────────────────────────────
# 4. Listing / cancelling (always scoped to the owning user)
# ──────────────────────────────────────────────────────────────────────

async def list_one_time_reminders(user_id: int) -> list[OneTimeReminder]:
    try:
        async with get_session() as s:
            res = await s.execute(
                select(OneTimeReminder)
                .where(OneTimeReminder.user_id == user_id)
                .order_by(OneTimeReminder.fire_at, OneTimeReminder.id)
            )
            return list(res.scalars())
    except SQLAlchemyError as exc:
        raise PersistenceError("could not list reminders") from exc


async def list_recurring_reminders(user_id: int) -> list[RecurringReminder]:
    try:
        async with get_session() as s:
            res = await s.execute(
                select(RecurringReminder)
                .where(
                    RecurringReminder.user_id == user_id,
                    RecurringReminder.active.is_(True),
                )
                .order_by(RecurringReminder.time_of_day, RecurringReminder.id)
            )
            return list(res.scalars())
    except SQLAlchemyError as exc:
        raise PersistenceError("could not list recurring reminders") from exc


async def delete_one_time_reminder(user_id: int, reminder_id: int) -> bool:
    """Delete the caller's reminder; ``False`` if it is missing or not theirs."""
    try:
        async with get_session() as s:
            async with s.begin():
                reminder = await s.get(OneTimeReminder, reminder_id)
                if reminder is None or reminder.user_id != user_id:
                    return False
                await s.delete(reminder)
            return True
    except SQLAlchemyError as exc:
        raise PersistenceError(f"could not cancel reminder {reminder_id}") from exc


async def deactivate_recurring_reminder(user_id: int, reminder_id: int) -> bool:
    try:
        async with get_session() as s:
            async with s.begin():
                reminder = await s.get(RecurringReminder, reminder_id)
                if reminder is None or reminder.user_id != user_id or not reminder.active:
                    return False
                reminder.active = False
            return True
    except SQLAlchemyError as exc:
        raise PersistenceError(f"could not cancel recurring reminder {reminder_id}") from exc


# ──────────────────────────────────────────────────────────────────────
# 5. Weather subscriptions (one row per user)
# ──────────────────────────────────────────────────────────────────────

async def get_weather_subscription(user_id: int) -> Optional[WeatherSubscription]:
    try:
        async with get_session() as s:
            res = await s.execute(
                select(WeatherSubscription).where(WeatherSubscription.user_id == user_id)
            )
            return res.scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise PersistenceError("could not load weather subscription") from exc


async def upsert_weather_subscription(user_id: int, city: str) -> WeatherSubscription:
    """Create or update-and-reactivate the user's single subscription."""
    try:
        async with get_session() as s:
            async with s.begin():
                res = await s.execute(
                    select(WeatherSubscription).where(WeatherSubscription.user_id == user_id)
                )
                sub = res.scalar_one_or_none()
                if sub is None:
                    sub = WeatherSubscription(user_id=user_id, city=city, active=True)
                    s.add(sub)
                else:
                    sub.city = city
                    sub.active = True
            return sub
    except SQLAlchemyError as exc:
        raise PersistenceError("could not save weather subscription") from exc


async def deactivate_weather_subscription(user_id: int) -> bool:
    try:
        async with get_session() as s:
            async with s.begin():
                res = await s.execute(
                    select(WeatherSubscription).where(
                        WeatherSubscription.user_id == user_id,
                        WeatherSubscription.active.is_(True),
                    )
                )
                sub = res.scalar_one_or_none()
                if sub is None:
                    return False
                sub.active = False
            return True
    except SQLAlchemyError as exc:
        raise PersistenceError("could not cancel weather subscription") from exc


# ──────────────────────────────────────────────────────────────────────
# 6. Dispatcher queries
# ──────────────────────────────────────────────────────────────────────

async def fetch_due_one_time(now: datetime) -> list[tuple[OneTimeReminder, str]]:
    """Reminders with ``fire_at <= now`` paired with the owner's address."""
    try:
        async with get_session() as s:
            res = await s.execute(
                select(OneTimeReminder, User.address)
                .join(User, User.id == OneTimeReminder.user_id)
                .where(OneTimeReminder.fire_at <= now)
                .order_by(OneTimeReminder.fire_at, OneTimeReminder.id)
            )
            return [(row[0], row[1]) for row in res.all()]
    except SQLAlchemyError as exc:
        raise PersistenceError("could not fetch due reminders") from exc


async def fetch_recurring_at(time_of_day: str) -> list[tuple[RecurringReminder, str]]:
    try:
        async with get_session() as s:
            res = await s.execute(
                select(RecurringReminder, User.address)
                .join(User, User.id == RecurringReminder.user_id)
                .where(
                    RecurringReminder.active.is_(True),
                    RecurringReminder.time_of_day == time_of_day,
                )
                .order_by(RecurringReminder.id)
            )
            return [(row[0], row[1]) for row in res.all()]
    except SQLAlchemyError as exc:
        raise PersistenceError("could not fetch recurring reminders") from exc


async def fetch_active_weather_subscriptions() -> list[tuple[WeatherSubscription, str]]:
    try:
        async with get_session() as s:
            res = await s.execute(
                select(WeatherSubscription, User.address)
                .join(User, User.id == WeatherSubscription.user_id)
                .where(WeatherSubscription.active.is_(True))
                .order_by(WeatherSubscription.id)
            )
            return [(row[0], row[1]) for row in res.all()]
    except SQLAlchemyError as exc:
        raise PersistenceError("could not fetch weather subscriptions") from exc


async def _remember_delivery(s: AsyncSession, user_id: int, message: str, at: datetime) -> None:
    await s.execute(
        update(User)
        .where(User.id == user_id)
        .values(last_reminder_message=message, last_reminder_at=at)
    )


async def consume_one_time_reminder(
    reminder: OneTimeReminder, now: datetime, delivered: bool
) -> None:
    """Delete a fired reminder (if still present) and record the delivery snapshot."""
    try:
        async with get_session() as s:
            async with s.begin():
                await s.execute(delete(OneTimeReminder).where(OneTimeReminder.id == reminder.id))
                if delivered:
                    await _remember_delivery(s, reminder.user_id, reminder.message, now)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"could not consume reminder {reminder.id}") from exc


async def mark_recurring_triggered(
    reminder: RecurringReminder, now: datetime, delivered: bool
) -> None:
    try:
        async with get_session() as s:
            async with s.begin():
                await s.execute(
                    update(RecurringReminder)
                    .where(RecurringReminder.id == reminder.id)
                    .values(last_triggered_at=now)
                )
                if delivered:
                    await _remember_delivery(s, reminder.user_id, reminder.message, now)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"could not mark recurring reminder {reminder.id}") from exc


async def mark_weather_sent(subscription_id: int, now: datetime) -> None:
    try:
        async with get_session() as s:
            async with s.begin():
                await s.execute(
                    update(WeatherSubscription)
                    .where(WeatherSubscription.id == subscription_id)
                    .values(last_sent_at=now)
                )
    except SQLAlchemyError as exc:
        raise PersistenceError(f"could not mark weather subscription {subscription_id}") from exc
