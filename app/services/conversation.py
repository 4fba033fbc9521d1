"""Inbound message handling: one message in, exactly one reply out.

``Conversation.handle`` upserts the sender, classifies the text, and either
runs a command handler or routes free text through ``route_free_text``.
Errors never escape: validation problems become corrective prompts,
store failures a "database error" reply, anything else a generic apology.
"""

from __future__ import annotations

import enum
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import db
from app.errors import NotFoundError, PersistenceError, ValidationError
from app.services import guided_flow, intent_resolver, lifecycle
from app.services.classifier import classify
from app.services.intent_resolver import Resolver
from app.services.sessions import SessionStore
from app.types.commands import Command, CommandIntent
from app.utils.timeutils import Clock, format_timestamp, system_clock
from config import settings
from db.models import RecurrenceKind, RecurringReminder, User

_LOGGER = logging.getLogger(__name__)

HELP_REPLY = (
    "Here's what I can do:\n"
    '- "remind me to call mom at 5pm" or "remind me to stretch in 20 minutes"\n'
    '- "remind me to pay rent every month on the 1st at 9am" / "... every day at 8am"\n'
    '- "hi" for a step-by-step reminder\n'
    '- "list" to see your reminders\n'
    '- "cancel <id>" or "cancel recurring <id>"\n'
    '- "snooze 10 minutes" to repeat your last reminder later\n'
    '- "subscribe weather <city>" for a daily weather update, "cancel weather" to stop'
)
FALLBACK_REPLY = 'I did not quite get that.\nSend "hi" to start setting a reminder, or "help" for options.'
DB_ERROR_REPLY = "Sorry, something went wrong with our database. Please try again in a moment."
GENERIC_ERROR_REPLY = "Sorry, something went wrong on my side. Please try again."
ASK_CITY_REPLY = "Which city should I send the daily weather for?"


class Route(str, enum.Enum):
    NLP_FIRST = "nlp_first"
    GUIDED = "guided"
    FALLBACK = "fallback"


def choose_route(session_open: bool, has_prior_reminders: bool, looks_like_reminder: bool) -> Route:
    """Where unclassified free text goes.

    Reminder-shaped text is tried against the NLP path unless a new user is
    mid-way through the guided flow; anything else continues an open
    session or falls back.
    """
    if looks_like_reminder and (has_prior_reminders or not session_open):
        return Route.NLP_FIRST
    if session_open:
        return Route.GUIDED
    return Route.FALLBACK


def describe_reminder(reminder) -> str:
    if isinstance(reminder, RecurringReminder):
        if reminder.kind == RecurrenceKind.MONTHLY:
            when = f"every month on day {reminder.day_of_month} at {reminder.time_of_day}"
        else:
            when = f"every day at {reminder.time_of_day}"
        return f'"{reminder.message}" {when} (id {reminder.id}, cancel with "cancel recurring {reminder.id}")'
    return f'"{reminder.message}" at {format_timestamp(reminder.fire_at)} (id {reminder.id})'


class Conversation:
    def __init__(
        self,
        sessions: SessionStore,
        *,
        clock: Clock | None = None,
        resolver: Resolver | None = None,
        confidence_threshold: float | None = None,
        timezone: str | None = None,
    ) -> None:
        self.sessions = sessions
        self._clock = clock or system_clock()
        self._resolver = resolver
        self._threshold = confidence_threshold
        self._timezone = timezone
        self._handlers: dict[CommandIntent, Callable[[User, Command], Awaitable[str]]] = {
            CommandIntent.WEATHER_CITY: self._on_weather_city,
            CommandIntent.SNOOZE: self._on_snooze,
            CommandIntent.WEATHER_SUBSCRIBE_CITY: self._on_weather_subscribe_city,
            CommandIntent.WEATHER_SUBSCRIBE: self._on_weather_subscribe,
            CommandIntent.WEATHER_CANCEL: self._on_weather_cancel,
            CommandIntent.CANCEL_RECURRING: self._on_cancel_recurring,
            CommandIntent.CANCEL_ONE_TIME: self._on_cancel_one_time,
            CommandIntent.HELP: self._on_help,
            CommandIntent.LIST: self._on_list,
            CommandIntent.GREETING: self._on_greeting,
            CommandIntent.UNCLASSIFIED: self._on_free_text,
        }

    async def handle(
        self,
        address: str,
        text: str,
        display_name: str | None = None,
        message_id: str | None = None,
    ) -> Optional[str]:
        """Return the reply for one inbound message.

        ``None`` only for a duplicate delivery of a message id already answered.
        """
        async with self.sessions.hold(address):
            if self.sessions.seen(message_id):
                _LOGGER.info("Duplicate inbound message %s from %s ignored", message_id, address)
                return None
            try:
                return await self._handle_locked(address, (text or "").strip(), display_name)
            except (ValidationError, NotFoundError) as exc:
                return str(exc)
            except PersistenceError:
                _LOGGER.exception("Database error while handling message from %s", address)
                return DB_ERROR_REPLY
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unhandled error while handling message from %s", address)
                return GENERIC_ERROR_REPLY

    async def _handle_locked(self, address: str, text: str, display_name: str | None) -> str:
        user = await db.upsert_user(address, display_name)
        if not text:
            return FALLBACK_REPLY
        command = classify(text, awaiting_city=self.sessions.take_city_prompt(address))
        _LOGGER.info("Message from %s classified as %s", address, command.intent.value)
        if command.error:
            raise ValidationError(command.error)
        return await self._handlers[command.intent](user, command)

    # -- free text ---------------------------------------------------------

    async def _on_free_text(self, user: User, command: Command) -> str:
        return await self.route_free_text(user, command)

    async def route_free_text(self, user: User, command: Command) -> str:
        address = user.address
        session = self.sessions.get(address)
        now = self._clock()
        route = choose_route(session is not None, user.has_prior_reminders, command.looks_like_reminder)

        if route == Route.NLP_FIRST:
            resolved = await lifecycle.resolve_timestamp(
                now,
                command.text,
                resolver=self._resolver or intent_resolver.resolve,
                threshold=self._threshold,
                timezone=self._timezone,
            )
            if resolved is not None:
                self.sessions.clear(address)
                return await self._create_resolved(user, resolved, command.lower)
            if session is None:
                return guided_flow.begin_with_message(
                    self.sessions, address, lifecycle.clean_message(command.text)
                )

        if session is not None:
            return await guided_flow.advance(self.sessions, session, user, command.text, now)
        return FALLBACK_REPLY

    async def _create_resolved(self, user: User, resolved: lifecycle.ResolvedReminder, lower: str) -> str:
        try:
            reminder = await lifecycle.create_from_text(user, resolved, lower)
        except PersistenceError:
            _LOGGER.exception("Could not save resolved reminder for %s", user.address)
            return (
                f"I understood your reminder for {format_timestamp(resolved.fire_at)}, "
                "but couldn't save it due to a database error. Please try again."
            )
        if isinstance(reminder, RecurringReminder):
            return f"All set! I'll remind you {describe_reminder(reminder)}."
        return (
            f'All set!\nI\'ll remind you about:\n"{reminder.message}"\n'
            f"at {format_timestamp(resolved.fire_at)}. (id {reminder.id})"
        )

    # -- commands ----------------------------------------------------------

    async def _on_greeting(self, user: User, command: Command) -> str:
        return guided_flow.begin(self.sessions, user.address)

    async def _on_help(self, user: User, command: Command) -> str:
        return HELP_REPLY

    async def _on_list(self, user: User, command: Command) -> str:
        one_time = await db.list_one_time_reminders(user.id)
        recurring = await db.list_recurring_reminders(user.id)
        subscription = await db.get_weather_subscription(user.id)
        if not one_time and not recurring and not (subscription and subscription.active):
            return 'You have no reminders. Send "hi" to create one.'
        lines = []
        if one_time:
            lines.append("Upcoming reminders:")
            lines.extend(f"- {describe_reminder(r)}" for r in one_time)
        if recurring:
            lines.append("Recurring reminders:")
            lines.extend(f"- {describe_reminder(r)}" for r in recurring)
        if subscription and subscription.active:
            lines.append(f"Daily weather for {subscription.city}.")
        return "\n".join(lines)

    async def _on_cancel_one_time(self, user: User, command: Command) -> str:
        rid = command.args["reminder_id"]
        await lifecycle.cancel_one_time(user, rid)
        return f"Cancelled reminder {rid}."

    async def _on_cancel_recurring(self, user: User, command: Command) -> str:
        rid = command.args["reminder_id"]
        await lifecycle.cancel_recurring(user, rid)
        return f"Cancelled recurring reminder {rid}."

    async def _on_snooze(self, user: User, command: Command) -> str:
        if not user.last_reminder_message:
            return "There's no recent reminder to snooze. Create one first, or send \"help\"."
        when = self._clock() + timedelta(minutes=command.args["minutes"])
        await lifecycle.create_one_time(user, user.last_reminder_message, when)
        return f'Snoozed. I\'ll remind you about "{user.last_reminder_message}" at {format_timestamp(when)}.'

    async def _on_weather_subscribe_city(self, user: User, command: Command) -> str:
        return await self._subscribe(user, command.args["city"])

    async def _on_weather_city(self, user: User, command: Command) -> str:
        city = command.args["city"]
        if not city:
            return 'I need a city name. Send "subscribe weather <city>" to try again.'
        return await self._subscribe(user, city)

    async def _on_weather_subscribe(self, user: User, command: Command) -> str:
        existing = await db.get_weather_subscription(user.id)
        if existing is not None and existing.city:
            return await self._subscribe(user, existing.city)
        self.sessions.open_city_prompt(user.address)
        return ASK_CITY_REPLY

    async def _subscribe(self, user: User, city: str) -> str:
        sub = await db.upsert_weather_subscription(user.id, city)
        _LOGGER.info("Weather subscription for %s set to %s", user.address, sub.city)
        return f"Subscribed! You'll get the weather for {sub.city} every day at {settings.WEATHER_DAILY_TIME}."

    async def _on_weather_cancel(self, user: User, command: Command) -> str:
        if await db.deactivate_weather_subscription(user.id):
            return "Your daily weather updates are cancelled."
        return "You don't have an active weather subscription."
