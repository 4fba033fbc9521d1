from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

import db
from config import settings

TZ = ZoneInfo("Asia/Kolkata")


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeSender:
    """Records outbound messages; ``fail_for`` addresses raise instead."""

    def __init__(self, ok: bool = True, fail_for: tuple = ()):
        self.ok = ok
        self.fail_for = set(fail_for)
        self.sent: list[tuple[str, str]] = []

    async def __call__(self, to: str, body: str) -> bool:
        if to in self.fail_for:
            raise RuntimeError(f"carrier rejected {to}")
        self.sent.append((to, body))
        return self.ok


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_TIMEZONE", "Asia/Kolkata")
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    monkeypatch.setattr(settings, "NLP_CONFIDENCE_THRESHOLD", 0.6)
    monkeypatch.setattr(settings, "WEATHER_DAILY_TIME", "09:00")


@pytest_asyncio.fixture
async def database():
    db.configure_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await db.create_all()
    yield
    await db.dispose_engine()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 10, 0, tzinfo=TZ))


@pytest.fixture
def sender():
    return FakeSender()
