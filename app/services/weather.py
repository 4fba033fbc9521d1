"""Current-weather lookup against OpenWeatherMap."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import requests

from app.errors import CollaboratorFailure
from app.types.parser_contract import WeatherReport
from config import settings

_LOGGER = logging.getLogger(__name__)

WeatherLookup = Callable[[str], Awaitable[Optional[WeatherReport]]]


def fetch_current(city: str) -> Optional[WeatherReport]:
    """Blocking lookup; ``None`` when no API key is configured.

    Raises ``CollaboratorFailure`` when the service is unreachable, rejects
    the city, or answers with a payload missing temperature or description.
    """
    if not settings.WEATHER_API_KEY:
        _LOGGER.warning("WEATHER_API_KEY is not set; skipping weather lookup for %s", city)
        return None
    try:
        resp = requests.get(
            settings.WEATHER_API_URL,
            params={"q": city, "appid": settings.WEATHER_API_KEY, "units": "metric"},
            timeout=settings.WEATHER_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        raise CollaboratorFailure(f"weather lookup for {city} failed: {exc}") from exc

    main = data.get("main") or {}
    conditions = data.get("weather") or [{}]
    temp = main.get("temp")
    description = conditions[0].get("description")
    if temp is None or not description:
        raise CollaboratorFailure(f"weather payload for {city} missing temperature or description")
    return WeatherReport(
        city=city,
        temp_c=temp,
        feels_like_c=main.get("feels_like"),
        description=description,
        humidity=main.get("humidity"),
    )


async def lookup(city: str, timeout: float | None = None) -> Optional[WeatherReport]:
    """Non-raising wrapper around ``fetch_current`` bounded by *timeout*."""
    limit = settings.WEATHER_TIMEOUT if timeout is None else timeout
    try:
        return await asyncio.wait_for(asyncio.to_thread(fetch_current, city), timeout=limit)
    except asyncio.TimeoutError:
        _LOGGER.warning("Weather lookup for %s timed out", city)
    except CollaboratorFailure as exc:
        _LOGGER.warning("%s", exc)
    return None
