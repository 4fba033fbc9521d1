"""Celery task driving the reminder dispatcher."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator

import redis
import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

from app.celery_app import celery_app
from app.services.dispatcher import Dispatcher, TickReport
from config import settings
import db

_LOGGER = logging.getLogger(__name__)

DISPATCH_LOCK_NAME = "reminder:dispatch-due"


@contextlib.asynccontextmanager
async def shared_dispatch_lock() -> AsyncIterator[bool]:
    """Same Redis lock as ``dispatch_due``, for the in-process dispatcher loop.

    Yields whether the lock was acquired; never waits for it. With Redis
    unreachable no Celery tick can run either, so the caller may tick.
    """
    client = aioredis.Redis.from_url(settings.REDIS_URL)
    lock = client.lock(DISPATCH_LOCK_NAME, timeout=settings.DISPATCH_LOCK_TIMEOUT)
    try:
        try:
            acquired = await lock.acquire(blocking=False)
        except RedisError as exc:
            _LOGGER.warning("dispatch lock unavailable, ticking without it: %s", exc)
            yield True
            return
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    await lock.release()
                except LockError:
                    _LOGGER.warning("dispatch lock expired before the tick finished")
    finally:
        await client.aclose()


async def _run_tick() -> TickReport | None:
    try:
        return await Dispatcher().run_tick()
    finally:
        # Each task runs its own event loop; pooled connections must not outlive it.
        await db.dispose_engine()


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.dispatch_due", bind=True)
def dispatch_due(self):  # noqa: D401
    """Run one dispatcher tick unless another worker is already running one."""
    client = redis.Redis.from_url(settings.REDIS_URL)
    lock = client.lock(DISPATCH_LOCK_NAME, timeout=settings.DISPATCH_LOCK_TIMEOUT)
    if not lock.acquire(blocking=False):
        _LOGGER.warning("dispatch_due skipped: another tick holds %s", DISPATCH_LOCK_NAME)
        return None
    try:
        report = asyncio.run(_run_tick())
    finally:
        try:
            lock.release()
        except LockError:
            _LOGGER.warning("dispatch lock expired before the tick finished")
    return report.as_dict() if report else None
