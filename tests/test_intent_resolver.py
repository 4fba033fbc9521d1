from datetime import datetime

import httpx
import openai
import pytest

from app.services import intent_resolver
from config import settings
from conftest import TZ

NOW = datetime(2026, 10, 19, 10, 0, tzinfo=TZ)


@pytest.mark.asyncio
async def test_no_api_key_means_no_result(monkeypatch):
    async def fail(*args):
        raise AssertionError("model must not be called without a key")

    monkeypatch.setattr(intent_resolver, "_call_openai", fail)
    assert await intent_resolver.resolve("remind me to call mom at 5pm", NOW, "Asia/Kolkata") is None


@pytest.mark.asyncio
async def test_resolve_parses_model_json(monkeypatch):
    seen = {}

    async def fake_call(text, now, timezone):
        seen.update(text=text, now=now, timezone=timezone)
        return (
            '{"intent": "create_reminder", "reminder_message": "call mom",'
            ' "remind_at": "2026-10-19T17:00:00+05:30", "confidence": 0.9}'
        )

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(intent_resolver, "_call_openai", fake_call)

    parsed = await intent_resolver.resolve("remind me to call mom at 5pm", NOW, "Asia/Kolkata")
    assert parsed.intent == "create_reminder"
    assert parsed.remind_at == datetime(2026, 10, 19, 17, 0, tzinfo=TZ)
    assert seen == {"text": "remind me to call mom at 5pm", "now": NOW, "timezone": "Asia/Kolkata"}


@pytest.mark.asyncio
async def test_transport_failure_is_not_an_error(monkeypatch):
    async def offline(text, now, timezone):
        raise openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(intent_resolver, "_call_openai", offline)
    assert await intent_resolver.resolve("remind me to call mom at 5pm", NOW, "Asia/Kolkata") is None


@pytest.mark.asyncio
async def test_garbage_output_is_not_an_error(monkeypatch):
    async def chatty(text, now, timezone):
        return "I think you want a reminder!"

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(intent_resolver, "_call_openai", chatty)
    assert await intent_resolver.resolve("remind me", NOW, "Asia/Kolkata") is None
