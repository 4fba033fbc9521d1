"""Celery application instance shared across the backend.

Start a worker and the beat scheduler with:
    celery -A app.celery_app worker -Q reminder -l info --concurrency=1
    celery -A app.celery_app beat -l info
"""

from celery import Celery
from celery.signals import setup_logging

from app.utils.logging_setup import configure_logging
from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("reminder_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.timezone = settings.DEFAULT_TIMEZONE

celery_app.conf.task_routes = {
    "app.workers.reminder.dispatch_due": {"queue": "reminder"},
}

# Beat schedule: one dispatcher tick every minute
celery_app.conf.beat_schedule = {
    "dispatch-due-reminders": {
        "task": "app.workers.reminder.dispatch_due",
        "schedule": settings.DISPATCH_INTERVAL_SECONDS,
        # A tick older than one interval is superseded by the next one.
        "options": {"expires": settings.DISPATCH_INTERVAL_SECONDS},
    }
}


@setup_logging.connect
def _configure_worker_logging(**_kwargs):
    configure_logging()


# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
