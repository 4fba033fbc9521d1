import asyncio
import contextlib
from datetime import datetime

import pytest

import db
from app.errors import PersistenceError
from app.services import lifecycle
from app.services.dispatcher import Dispatcher
from app.types.parser_contract import WeatherReport
from db.models import RecurrenceKind
from conftest import TZ, FakeSender


def _at(*args):
    return datetime(*args, tzinfo=TZ)


class FakeWeather:
    def __init__(self, report=None):
        self.report = report
        self.calls: list[str] = []

    async def __call__(self, city):
        self.calls.append(city)
        return self.report


def _dispatcher(sender, weather=None):
    return Dispatcher(send=sender, weather_lookup=weather or FakeWeather(), tz=TZ, weather_time="09:00")


@pytest.mark.asyncio
async def test_one_time_reminder_sent_then_deleted(database, sender):
    user = await db.upsert_user("+1")
    await lifecycle.create_one_time(user, "call mom", _at(2026, 10, 19, 17, 0))
    dispatcher = _dispatcher(sender)

    report = await dispatcher.run_tick(_at(2026, 10, 19, 16, 59))
    assert report.one_time_sent == 0
    assert sender.sent == []

    report = await dispatcher.run_tick(_at(2026, 10, 19, 17, 0))
    assert report.one_time_sent == 1
    assert sender.sent == [("+1", "Reminder: call mom")]
    assert await db.list_one_time_reminders(user.id) == []

    user = await db.get_user("+1")
    assert user.last_reminder_message == "call mom"
    assert user.last_reminder_at == _at(2026, 10, 19, 17, 0)

    await dispatcher.run_tick(_at(2026, 10, 19, 17, 1))
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_failed_one_time_send_still_deletes(database):
    sender = FakeSender(ok=False)
    user = await db.upsert_user("+1")
    await lifecycle.create_one_time(user, "call mom", _at(2026, 10, 19, 17, 0))

    report = await _dispatcher(sender).run_tick(_at(2026, 10, 19, 17, 5))
    assert report.one_time_failed == 1
    assert await db.list_one_time_reminders(user.id) == []
    assert (await db.get_user("+1")).last_reminder_message is None


@pytest.mark.asyncio
async def test_one_address_failing_does_not_stop_others(database):
    sender = FakeSender(fail_for=("+1",))
    first = await db.upsert_user("+1")
    second = await db.upsert_user("+2")
    await lifecycle.create_one_time(first, "a", _at(2026, 10, 19, 17, 0))
    await lifecycle.create_one_time(second, "b", _at(2026, 10, 19, 17, 0))

    report = await _dispatcher(sender).run_tick(_at(2026, 10, 19, 17, 0))
    assert report.one_time_failed == 1
    assert report.one_time_sent == 1
    assert sender.sent == [("+2", "Reminder: b")]


@pytest.mark.asyncio
async def test_daily_fires_once_per_day(database, sender):
    user = await db.upsert_user("+1")
    await lifecycle.create_recurring(user, "stretch", RecurrenceKind.DAILY, "08:00")
    dispatcher = _dispatcher(sender)

    assert (await dispatcher.run_tick(_at(2026, 10, 19, 8, 0))).recurring_sent == 1
    assert (await dispatcher.run_tick(_at(2026, 10, 19, 8, 0, 30))).recurring_sent == 0
    assert (await dispatcher.run_tick(_at(2026, 10, 19, 8, 1))).recurring_sent == 0
    assert (await dispatcher.run_tick(_at(2026, 10, 20, 8, 0))).recurring_sent == 1
    assert sender.sent == [("+1", "Recurring reminder: stretch")] * 2


@pytest.mark.asyncio
async def test_monthly_fires_on_its_day_once_per_month(database, sender):
    user = await db.upsert_user("+1")
    await lifecycle.create_recurring(user, "pay rent", RecurrenceKind.MONTHLY, "09:00", 1)
    dispatcher = _dispatcher(sender)

    assert (await dispatcher.run_tick(_at(2026, 10, 2, 9, 0))).recurring_sent == 0
    assert (await dispatcher.run_tick(_at(2026, 11, 1, 9, 0))).recurring_sent == 1
    assert (await dispatcher.run_tick(_at(2026, 11, 1, 9, 0, 40))).recurring_sent == 0
    assert (await dispatcher.run_tick(_at(2026, 12, 1, 9, 0))).recurring_sent == 1


@pytest.mark.asyncio
async def test_day_31_is_skipped_in_short_months(database, sender):
    user = await db.upsert_user("+1")
    await lifecycle.create_recurring(user, "review budget", RecurrenceKind.MONTHLY, "20:00", 31)
    dispatcher = _dispatcher(sender)

    assert (await dispatcher.run_tick(_at(2026, 11, 30, 20, 0))).recurring_sent == 0
    assert (await dispatcher.run_tick(_at(2026, 12, 31, 20, 0))).recurring_sent == 1


@pytest.mark.asyncio
async def test_failed_recurring_send_still_marks_triggered(database):
    sender = FakeSender(ok=False)
    user = await db.upsert_user("+1")
    reminder = await lifecycle.create_recurring(user, "stretch", RecurrenceKind.DAILY, "08:00")
    dispatcher = _dispatcher(sender)

    assert (await dispatcher.run_tick(_at(2026, 10, 19, 8, 0))).recurring_failed == 1
    assert (await dispatcher.run_tick(_at(2026, 10, 19, 8, 0, 30))).recurring_failed == 0

    [stored] = await db.list_recurring_reminders(user.id)
    assert stored.id == reminder.id
    assert stored.last_triggered_at == _at(2026, 10, 19, 8, 0)
    assert (await db.get_user("+1")).last_reminder_message is None


@pytest.mark.asyncio
async def test_cancelled_recurring_never_fires(database, sender):
    user = await db.upsert_user("+1")
    reminder = await lifecycle.create_recurring(user, "stretch", RecurrenceKind.DAILY, "08:00")
    assert await db.deactivate_recurring_reminder(user.id, reminder.id)

    assert (await _dispatcher(sender).run_tick(_at(2026, 10, 19, 8, 0))).recurring_sent == 0


@pytest.mark.asyncio
async def test_weather_sent_once_at_daily_time(database, sender):
    weather = FakeWeather(WeatherReport(city="Pune", temp_c=27.6, feels_like_c=29.2, description="haze", humidity=61))
    user = await db.upsert_user("+1")
    await db.upsert_weather_subscription(user.id, "Pune")
    dispatcher = _dispatcher(sender, weather)

    assert (await dispatcher.run_tick(_at(2026, 10, 19, 8, 59))).weather_sent == 0
    assert weather.calls == []

    assert (await dispatcher.run_tick(_at(2026, 10, 19, 9, 0))).weather_sent == 1
    assert (await dispatcher.run_tick(_at(2026, 10, 19, 9, 0, 30))).weather_sent == 0
    assert sender.sent == [
        ("+1", "Daily weather update: Weather in Pune now: 28°C, haze. Feels like 29°C. Humidity: 61%.")
    ]
    assert weather.calls == ["Pune"]

    assert (await dispatcher.run_tick(_at(2026, 10, 20, 9, 0))).weather_sent == 1


@pytest.mark.asyncio
async def test_failed_weather_lookup_is_retried(database, sender):
    weather = FakeWeather(None)
    user = await db.upsert_user("+1")
    await db.upsert_weather_subscription(user.id, "Atlantis")
    dispatcher = _dispatcher(sender, weather)

    report = await dispatcher.run_tick(_at(2026, 10, 19, 9, 0))
    assert report.weather_skipped == 1
    assert sender.sent == []
    assert (await db.get_weather_subscription(user.id)).last_sent_at is None

    weather.report = WeatherReport(city="Atlantis", temp_c=20, description="clear sky")
    report = await dispatcher.run_tick(_at(2026, 10, 19, 9, 0, 30))
    assert report.weather_sent == 1
    assert (await db.get_weather_subscription(user.id)).last_sent_at == _at(2026, 10, 19, 9, 0, 30)


@pytest.mark.asyncio
async def test_failing_sweep_does_not_stop_the_others(database, sender, monkeypatch):
    user = await db.upsert_user("+1")
    await lifecycle.create_recurring(user, "stretch", RecurrenceKind.DAILY, "08:00")

    async def broken(now):
        raise PersistenceError("could not fetch due reminders")

    monkeypatch.setattr(db, "fetch_due_one_time", broken)
    report = await _dispatcher(sender).run_tick(_at(2026, 10, 19, 8, 0))
    assert report.errors == 1
    assert report.recurring_sent == 1


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(sender):
    dispatcher = _dispatcher(sender)
    async with dispatcher._lock:
        assert dispatcher.running
        assert await dispatcher.run_tick(_at(2026, 10, 19, 8, 0)) is None
    assert not dispatcher.running


@pytest.mark.asyncio
async def test_failed_weather_send_is_counted_and_not_retried(database):
    sender = FakeSender(ok=False)
    weather = FakeWeather(WeatherReport(city="Pune", temp_c=27.6, description="haze"))
    user = await db.upsert_user("+1")
    await db.upsert_weather_subscription(user.id, "Pune")
    dispatcher = _dispatcher(sender, weather)

    report = await dispatcher.run_tick(_at(2026, 10, 19, 9, 0))
    assert report.weather_failed == 1
    assert report.weather_sent == 0
    assert (await db.get_weather_subscription(user.id)).last_sent_at == _at(2026, 10, 19, 9, 0)

    report = await dispatcher.run_tick(_at(2026, 10, 19, 9, 0, 30))
    assert report.weather_failed == 0
    assert weather.calls == ["Pune"]


@pytest.mark.asyncio
async def test_run_forever_ticks_only_while_holding_the_guard(sender, monkeypatch):
    dispatcher = _dispatcher(sender)
    ticks = []

    async def fake_tick(now=None):
        ticks.append(now)

    monkeypatch.setattr(dispatcher, "run_tick", fake_tick)
    grants = iter([False, True, False])

    @contextlib.asynccontextmanager
    async def guard():
        try:
            acquired = next(grants)
        except StopIteration:
            raise asyncio.CancelledError()
        yield acquired

    with pytest.raises(asyncio.CancelledError):
        await dispatcher.run_forever(interval=0, guard=guard)
    assert len(ticks) == 1
