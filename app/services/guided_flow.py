"""Step-by-step reminder flow for users who don't phrase a full reminder.

    hi ──► awaiting_message ──(any text)──► awaiting_time ──(valid time)──► done
                                               │  ▲
                                               └──┘ unparseable time: re-prompt

The caller holds the address lock for the whole step.
"""

from __future__ import annotations

import logging
from datetime import datetime

from app.errors import PersistenceError
from app.services import lifecycle
from app.services.sessions import Session, SessionStore, Stage
from app.utils.timeutils import format_timestamp, next_occurrence, parse_clock_time
from db.models import User

_LOGGER = logging.getLogger(__name__)

GREETING_REPLY = "Hey! What do you want me to remind you about?"
ASK_TIME_REPLY = (
    "Got it.\nNow tell me when to remind you.\n"
    'Examples: "9:36AM", "9:36 PM", or "14:56".'
)
BAD_TIME_REPLY = (
    "I could not understand that time.\n"
    'Please send something like "9:36AM" or "14:56".'
)
EMPTY_MESSAGE_REPLY = "What do you want me to remind you about?"


def begin(sessions: SessionStore, address: str) -> str:
    sessions.start(address)
    return GREETING_REPLY


def begin_with_message(sessions: SessionStore, address: str, message: str) -> str:
    """Open a session that already knows what to remind about."""
    if not message.strip():
        sessions.start(address)
        return EMPTY_MESSAGE_REPLY
    sessions.await_time(address, message.strip())
    return ASK_TIME_REPLY


async def advance(
    sessions: SessionStore,
    session: Session,
    user: User,
    text: str,
    now: datetime,
) -> str:
    """Feed one message into an open session and return the reply."""
    address = user.address

    if session.stage == Stage.AWAITING_MESSAGE:
        if not text.strip():
            sessions.touch(address)
            return EMPTY_MESSAGE_REPLY
        sessions.await_time(address, text.strip())
        return ASK_TIME_REPLY

    at = parse_clock_time(text)
    if at is None:
        sessions.touch(address)
        return BAD_TIME_REPLY

    when = next_occurrence(at, now)
    message = session.pending_message or ""
    sessions.clear(address)
    try:
        await lifecycle.create_one_time(user, message, when)
    except PersistenceError:
        _LOGGER.exception("Guided flow could not save reminder for %s", address)
        return (
            f"I understood {format_timestamp(when)}, but couldn't save your reminder "
            "due to a database error. Please try again."
        )
    return (
        f'All set!\nI\'ll remind you about:\n"{message}"\nat {format_timestamp(when)}.'
    )
