from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import db
import main
from app.errors import PersistenceError
from app.services import lifecycle
from app.utils import sms


class FakeConversation:
    def __init__(self, reply="Hey!"):
        self.reply = reply
        self.calls = []

    async def handle(self, address, text, display_name=None, message_id=None):
        self.calls.append((address, text, display_name, message_id))
        return self.reply


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    async def fake_deliver(to, body, timeout=None):
        sent.append((to, body))
        return True

    monkeypatch.setattr(sms, "deliver", fake_deliver)
    return sent


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main.settings, "TELNYX_PUBLIC_KEY", None)
    monkeypatch.setattr(main.settings, "DISPATCHER_IN_PROCESS", False)
    return TestClient(main.app)


def _inbound(text, direction="inbound", phone="+15550001", msg_id="msg-1"):
    return {
        "data": {
            "event_type": "message.received",
            "payload": {
                "id": msg_id,
                "direction": direction,
                "from": {"phone_number": phone, "name": "Asha"},
                "text": text,
            },
        }
    }


def test_health(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.text == "Reminder bot is running"


def test_ping(client):
    resp = client.post("/v1/sms/telnyx", json={"data": {"payload": {"type": "ping"}}})
    assert resp.text == "PONG"


def test_inbound_message_is_answered(client, outbox, monkeypatch):
    fake = FakeConversation("Hey! What do you want me to remind you about?")
    monkeypatch.setattr(main.app.state, "conversation", fake)

    resp = client.post("/v1/sms/telnyx", json=_inbound("hi"))
    assert resp.status_code == 200
    assert resp.text == "OK"
    assert fake.calls == [("+15550001", "hi", "Asha", "msg-1")]
    assert outbox == [("+15550001", "Hey! What do you want me to remind you about?")]


def test_duplicate_delivery_sends_nothing(client, outbox, monkeypatch):
    monkeypatch.setattr(main.app.state, "conversation", FakeConversation(None))
    client.post("/v1/sms/telnyx", json=_inbound("hi"))
    assert outbox == []


def test_outbound_receipts_are_ignored(client, outbox, monkeypatch):
    fake = FakeConversation()
    monkeypatch.setattr(main.app.state, "conversation", fake)

    resp = client.post("/v1/sms/telnyx", json=_inbound("Reminder: call mom", direction="outbound"))
    assert resp.text == "IGNORED"
    assert fake.calls == []
    assert outbox == []


def test_malformed_body_is_rejected(client):
    resp = client.post("/v1/sms/telnyx", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400


@pytest.fixture
def fake_store(monkeypatch):
    created = []

    async def upsert_user(address, display_name=None):
        return SimpleNamespace(id=1, address=address)

    async def create_one_time(user, message, when):
        created.append((user.address, message, when))
        return SimpleNamespace(id=7, message=message, fire_at=when.astimezone(timezone.utc))

    monkeypatch.setattr(db, "upsert_user", upsert_user)
    monkeypatch.setattr(lifecycle, "create_one_time", create_one_time)
    return created


def test_create_reminder(client, fake_store):
    when = datetime.now(timezone.utc) + timedelta(hours=1)
    resp = client.post(
        "/v1/reminders",
        json={"address": "+15550001", "message": "call mom", "remind_at": when.isoformat()},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["id"] == 7
    assert body["address"] == "+15550001"
    assert body["message"] == "call mom"
    assert len(fake_store) == 1


def test_create_reminder_requires_offset(client, fake_store):
    when = (datetime.now() + timedelta(hours=1)).replace(microsecond=0)
    resp = client.post(
        "/v1/reminders",
        json={"address": "+15550001", "message": "call mom", "remind_at": when.isoformat()},
    )
    assert resp.status_code == 422
    assert fake_store == []


def test_create_reminder_rejects_past_time(client, fake_store):
    when = datetime.now(timezone.utc) - timedelta(minutes=5)
    resp = client.post(
        "/v1/reminders",
        json={"address": "+15550001", "message": "call mom", "remind_at": when.isoformat()},
    )
    assert resp.status_code == 422
    assert fake_store == []


def test_create_reminder_store_failure(client, monkeypatch):
    async def upsert_user(address, display_name=None):
        raise PersistenceError("could not upsert user")

    monkeypatch.setattr(db, "upsert_user", upsert_user)
    when = datetime.now(timezone.utc) + timedelta(hours=1)
    resp = client.post(
        "/v1/reminders",
        json={"address": "+15550001", "message": "call mom", "remind_at": when.isoformat()},
    )
    assert resp.status_code == 503
