"""Process-wide logging setup shared by the web app, Celery and cron entry points."""

from __future__ import annotations

import logging
import sys

from config import settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO.
_NOISY = ("httpx", "httpcore", "openai", "urllib3", "telnyx")


def configure_logging(level: str | int | None = None) -> None:
    """Install a single stream handler on the root logger.

    Safe to call more than once; existing root handlers are replaced.
    """
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        level = getattr(logging, level.strip().upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    for name in _NOISY:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
