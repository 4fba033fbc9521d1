"""Outbound SMS via Telnyx.

``send_sms`` is the raw blocking call; ``deliver`` is what the rest of the
service uses: bounded by ``SEND_TIMEOUT`` and never raising, it reports
success as a bool.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import telnyx

from config import settings

_LOGGER = logging.getLogger(__name__)

Sender = Callable[[str, str], Awaitable[bool]]

FROM_NUM = settings.TELNYX_FROM_NUMBER
TELNYX_API_KEY = settings.TELNYX_API_KEY
if TELNYX_API_KEY:
    telnyx.api_key = TELNYX_API_KEY


def send_sms(to: str, body: str) -> None:
    if not TELNYX_API_KEY or not FROM_NUM:
        _LOGGER.info("[SMS] DEV mode: would send to %s: %s", to, body)
        return
    telnyx.Message.create(from_=FROM_NUM, to=to, text=body)


async def deliver(to: str, body: str, timeout: float | None = None) -> bool:
    """Send *body* to *to*; a failure or timeout is logged and reported as ``False``."""
    limit = settings.SEND_TIMEOUT if timeout is None else timeout
    try:
        await asyncio.wait_for(asyncio.to_thread(send_sms, to, body), timeout=limit)
    except asyncio.TimeoutError:
        _LOGGER.warning("[SMS] send to %s timed out after %.1fs", to, limit)
        return False
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("[SMS] send to %s failed: %s", to, exc)
        return False
    return True
