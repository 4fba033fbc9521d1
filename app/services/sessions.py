"""Per-address conversational state.

One ``SessionStore`` is owned by the web app and handed to the conversation
router; nothing here is module-global, so the store can be swapped for a
shared one later. Entries expire after ``ttl_seconds`` of inactivity.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

from app.utils.timeutils import Clock, system_clock


class Stage(str, enum.Enum):
    AWAITING_MESSAGE = "awaiting_message"
    AWAITING_TIME = "awaiting_time"


@dataclass
class Session:
    stage: Stage
    updated_at: datetime
    pending_message: Optional[str] = None


class SessionStore:
    def __init__(
        self,
        ttl_seconds: int = 1800,
        clock: Clock | None = None,
        dedup_ttl_seconds: int = 600,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._dedup_ttl = timedelta(seconds=dedup_ttl_seconds)
        self._clock = clock or system_clock()
        self._sessions: dict[str, Session] = {}
        self._city_prompts: dict[str, datetime] = {}
        self._seen_messages: dict[str, datetime] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    # -- locking -----------------------------------------------------------

    def lock(self, address: str) -> asyncio.Lock:
        """Lock guarding read-modify-write of *address*'s state."""
        lock = self._locks.get(address)
        if lock is None:
            lock = self._locks[address] = asyncio.Lock()
        return lock

    @contextlib.asynccontextmanager
    async def hold(self, address: str) -> AsyncIterator[None]:
        """Hold *address*'s lock; counted so ``prune`` never drops it while in use."""
        lock = self.lock(address)
        self._holders[address] = self._holders.get(address, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[address] -= 1
            if not self._holders[address]:
                del self._holders[address]

    def prune(self) -> None:
        """Drop expired sessions and prompts, and locks nobody holds or awaits."""
        now = self._clock()
        for address in [a for a, s in self._sessions.items() if now - s.updated_at > self._ttl]:
            del self._sessions[address]
        for address in [a for a, at in self._city_prompts.items() if now - at > self._ttl]:
            del self._city_prompts[address]
        for address in [a for a in self._locks if a not in self._holders]:
            del self._locks[address]

    # -- guided-flow sessions ---------------------------------------------

    def get(self, address: str) -> Optional[Session]:
        session = self._sessions.get(address)
        if session is None:
            return None
        if self._clock() - session.updated_at > self._ttl:
            del self._sessions[address]
            return None
        return session

    def start(self, address: str) -> Session:
        session = Session(stage=Stage.AWAITING_MESSAGE, updated_at=self._clock())
        self._sessions[address] = session
        return session

    def await_time(self, address: str, message: str) -> Session:
        session = Session(
            stage=Stage.AWAITING_TIME,
            updated_at=self._clock(),
            pending_message=message,
        )
        self._sessions[address] = session
        return session

    def touch(self, address: str) -> None:
        session = self._sessions.get(address)
        if session is not None:
            session.updated_at = self._clock()

    def clear(self, address: str) -> Optional[Session]:
        return self._sessions.pop(address, None)

    # -- "which city?" prompts --------------------------------------------

    def open_city_prompt(self, address: str) -> None:
        self._city_prompts[address] = self._clock()

    def has_city_prompt(self, address: str) -> bool:
        opened = self._city_prompts.get(address)
        if opened is None:
            return False
        if self._clock() - opened > self._ttl:
            del self._city_prompts[address]
            return False
        return True

    def take_city_prompt(self, address: str) -> bool:
        """Consume the prompt; True if one was open."""
        if not self.has_city_prompt(address):
            return False
        del self._city_prompts[address]
        return True

    # -- inbound duplicate suppression ------------------------------------

    def seen(self, message_id: str | None) -> bool:
        """Record *message_id*; True if it was already handled recently.

        Also prunes idle per-address state, once per inbound message.
        """
        self.prune()
        if not message_id:
            return False
        now = self._clock()
        expired = [k for k, at in self._seen_messages.items() if now - at > self._dedup_ttl]
        for key in expired:
            del self._seen_messages[key]
        if message_id in self._seen_messages:
            return True
        self._seen_messages[message_id] = now
        return False
