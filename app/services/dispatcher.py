"""Periodic delivery of due reminders and daily weather updates.

One call to ``Dispatcher.run_tick`` runs three independent sweeps against
the same ``now``:

1. one-time reminders with ``fire_at <= now``: send, then delete. The row is
   deleted whether or not the send succeeded, so delivery is at-most-once.
2. recurring reminders whose ``time_of_day`` equals ``now`` as ``HH:MM``:
   DAILY fires once per calendar day, MONTHLY once per month on its day.
   ``last_triggered_at`` is advanced even when the send fails.
3. weather subscriptions, only at the configured daily time and once per
   calendar day. A failed lookup leaves ``last_sent_at`` untouched; a failed
   send still marks the day as done.

A failure on one item is logged and the sweep moves on; a failure of a whole
sweep is logged and the next sweep still runs. Ticks never overlap: a tick
that starts while another is running is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import AsyncContextManager, Callable, Optional
from zoneinfo import ZoneInfo

import db
from app.services import weather
from app.services.weather import WeatherLookup
from app.utils import sms
from app.utils.sms import Sender
from app.utils.timeutils import Clock, app_timezone, hhmm, is_same_day, is_same_year_month
from config import settings
from db.models import RecurrenceKind, RecurringReminder

_LOGGER = logging.getLogger(__name__)

TickGuard = Callable[[], AsyncContextManager[bool]]


@dataclass
class TickReport:
    one_time_sent: int = 0
    one_time_failed: int = 0
    recurring_sent: int = 0
    recurring_failed: int = 0
    weather_sent: int = 0
    weather_failed: int = 0
    weather_skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def should_fire_recurring(reminder: RecurringReminder, now: datetime, tz: ZoneInfo) -> bool:
    """Trigger-dedup rule for a recurring reminder whose time already matches."""
    local_now = now.astimezone(tz)
    last = reminder.last_triggered_at
    if reminder.kind == RecurrenceKind.DAILY:
        return last is None or not is_same_day(now, last, tz)
    if reminder.kind == RecurrenceKind.MONTHLY:
        # No month-end rollover: day 31 never fires in a 30-day month.
        if reminder.day_of_month != local_now.day:
            return False
        return last is None or not is_same_year_month(now, last, tz)
    return False


class Dispatcher:
    def __init__(
        self,
        *,
        send: Sender | None = None,
        weather_lookup: WeatherLookup | None = None,
        clock: Clock | None = None,
        tz: ZoneInfo | None = None,
        weather_time: str | None = None,
    ) -> None:
        self._tz = tz or app_timezone()
        self._send = send or sms.deliver
        self._weather_lookup = weather_lookup or weather.lookup
        self._clock = clock or (lambda: datetime.now(tz=self._tz))
        self._weather_time = weather_time or settings.WEATHER_DAILY_TIME
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_tick(self, now: datetime | None = None) -> Optional[TickReport]:
        """Run one pass; ``None`` if a previous tick is still in progress."""
        if self._lock.locked():
            _LOGGER.warning("Dispatcher tick skipped: previous tick still running")
            return None
        async with self._lock:
            now = (now or self._clock()).astimezone(self._tz)
            report = TickReport()
            for sweep in (self._sweep_one_time, self._sweep_recurring, self._sweep_weather):
                try:
                    await sweep(now, report)
                except Exception:  # noqa: BLE001
                    report.errors += 1
                    _LOGGER.exception("Dispatcher %s failed at %s", sweep.__name__, now.isoformat())
            _LOGGER.info("Dispatcher tick %s: %s", hhmm(now), report.as_dict())
            return report

    async def run_forever(self, interval: float | None = None, guard: TickGuard | None = None) -> None:
        """Tick until cancelled; each tick completes before the next sleep.

        *guard* is entered around every tick and yields whether this process
        may tick now (e.g. a lock shared with Celery workers).
        """
        interval = settings.DISPATCH_INTERVAL_SECONDS if interval is None else interval
        try:
            while True:
                if guard is None:
                    await self.run_tick()
                else:
                    async with guard() as acquired:
                        if acquired:
                            await self.run_tick()
                        else:
                            _LOGGER.info("Dispatcher tick skipped: dispatch lock held elsewhere")
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            _LOGGER.info("Dispatcher loop cancelled")
            raise

    # -- sweeps ------------------------------------------------------------

    async def _deliver(self, address: str, body: str) -> bool:
        try:
            return bool(await self._send(address, body))
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Send to %s raised: %s", address, exc)
            return False

    async def _sweep_one_time(self, now: datetime, report: TickReport) -> None:
        for reminder, address in await db.fetch_due_one_time(now):
            try:
                delivered = await self._deliver(address, f"Reminder: {reminder.message}")
                await db.consume_one_time_reminder(reminder, now, delivered)
            except Exception:  # noqa: BLE001
                report.errors += 1
                _LOGGER.exception("One-time reminder %s could not be processed", reminder.id)
                continue
            if delivered:
                report.one_time_sent += 1
                _LOGGER.info("Reminder %s sent to %s", reminder.id, address)
            else:
                report.one_time_failed += 1
                _LOGGER.warning("Reminder %s to %s dropped after failed send", reminder.id, address)

    async def _sweep_recurring(self, now: datetime, report: TickReport) -> None:
        for reminder, address in await db.fetch_recurring_at(hhmm(now)):
            if not should_fire_recurring(reminder, now, self._tz):
                continue
            try:
                delivered = await self._deliver(address, f"Recurring reminder: {reminder.message}")
                await db.mark_recurring_triggered(reminder, now, delivered)
            except Exception:  # noqa: BLE001
                report.errors += 1
                _LOGGER.exception("Recurring reminder %s could not be processed", reminder.id)
                continue
            if delivered:
                report.recurring_sent += 1
                _LOGGER.info("Recurring reminder %s sent to %s", reminder.id, address)
            else:
                report.recurring_failed += 1
                _LOGGER.warning("Recurring reminder %s to %s failed; next try next period", reminder.id, address)

    async def _sweep_weather(self, now: datetime, report: TickReport) -> None:
        if hhmm(now) != self._weather_time:
            return
        for sub, address in await db.fetch_active_weather_subscriptions():
            if sub.last_sent_at is not None and is_same_day(now, sub.last_sent_at, self._tz):
                continue
            try:
                current = await self._weather_lookup(sub.city)
                if current is None:
                    report.weather_skipped += 1
                    _LOGGER.warning("No weather for %s; subscription %s retried later", sub.city, sub.id)
                    continue
                delivered = await self._deliver(address, f"Daily weather update: {current.summary()}")
                await db.mark_weather_sent(sub.id, now)
            except Exception:  # noqa: BLE001
                report.errors += 1
                _LOGGER.exception("Weather subscription %s could not be processed", sub.id)
                continue
            if delivered:
                report.weather_sent += 1
            else:
                report.weather_failed += 1
                _LOGGER.warning("Weather update for subscription %s to %s failed", sub.id, address)
