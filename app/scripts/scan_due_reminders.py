"""Run a single dispatcher tick.

Cron alternative to Celery beat; schedule it every minute:
    python -m app.scripts.scan_due_reminders
"""

from __future__ import annotations

import asyncio
import logging

from app.services.dispatcher import Dispatcher
from app.utils.logging_setup import configure_logging
import db

_LOGGER = logging.getLogger(__name__)


async def main() -> None:
    try:
        report = await Dispatcher().run_tick()
        _LOGGER.info("scan_due_reminders: %s", report.as_dict() if report else "skipped")
    finally:
        await db.dispose_engine()


if __name__ == "__main__":  # pragma: no cover
    configure_logging()
    _LOGGER.info("[CRON] scan_due_reminders: job started")
    try:
        asyncio.run(main())
        _LOGGER.info("[CRON] scan_due_reminders: job completed successfully")
    except Exception:
        _LOGGER.exception("[CRON] scan_due_reminders: job failed")
