import asyncio
import logging
from datetime import datetime

import telnyx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

import db
from app.errors import PersistenceError, ValidationError
from app.services import lifecycle
from app.services.conversation import Conversation
from app.services.dispatcher import Dispatcher
from app.services.sessions import SessionStore
from app.utils import sms
from app.utils.logging_setup import configure_logging
from app.utils.timeutils import system_clock
from app.workers.reminder import shared_dispatch_lock
from config import settings

configure_logging()
_LOGGER = logging.getLogger(__name__)

# Configure telnyx public key
if settings.TELNYX_PUBLIC_KEY:
    telnyx.public_key = settings.TELNYX_PUBLIC_KEY

app = FastAPI()

app.state.conversation = Conversation(
    SessionStore(
        ttl_seconds=settings.SESSION_TTL_SECONDS,
        clock=system_clock(),
        dedup_ttl_seconds=settings.INBOUND_DEDUP_TTL_SECONDS,
    ),
)
app.state.dispatcher_task = None


@app.on_event("startup")
async def startup_event():
    # Tables are managed via Alembic migrations.
    if settings.DISPATCHER_IN_PROCESS:
        app.state.dispatcher_task = asyncio.create_task(
            Dispatcher().run_forever(guard=shared_dispatch_lock), name="reminder-dispatcher"
        )
        _LOGGER.info("In-process dispatcher started (interval=%ss)", settings.DISPATCH_INTERVAL_SECONDS)


@app.on_event("shutdown")
async def shutdown_event():
    task = app.state.dispatcher_task
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        app.state.dispatcher_task = None
    await db.dispose_engine()


# --------------------------------------------
# Background task: answer one inbound message
# --------------------------------------------

async def respond(conversation: Conversation, address: str, text: str,
                  display_name: str | None = None, message_id: str | None = None) -> None:
    reply = await conversation.handle(address, text, display_name, message_id)
    if reply is None:
        return
    if not await sms.deliver(address, reply):
        _LOGGER.warning("Reply to %s could not be delivered", address)


# --------------------------------------------
# Endpoints
# --------------------------------------------

@app.get("/", response_class=PlainTextResponse)
async def health():
    return PlainTextResponse("Reminder bot is running")


@app.post("/v1/sms/telnyx", response_class=PlainTextResponse)
async def telnyx_webhook(request: Request, background: BackgroundTasks):
    raw_body = await request.body()
    sig = request.headers.get("telnyx-signature-ed25519")
    ts = request.headers.get("telnyx-timestamp")

    try:
        if settings.TELNYX_PUBLIC_KEY:
            event = telnyx.Webhook.construct_event(raw_body.decode(), sig, ts)
            payload = event.data["payload"]
        else:  # dev mode: skip signature verification
            payload = (await request.json())["data"]["payload"]
    except Exception:
        raise HTTPException(400, "Bad signature")

    # TelnyxObject -> dict if needed
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()

    if payload.get("type") == "ping":
        return PlainTextResponse("PONG")

    # Delivery receipts for our own outbound messages arrive on the same hook.
    if payload.get("direction", "inbound") != "inbound":
        return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)

    sender = payload.get("from") or payload.get("from_", {})
    if hasattr(sender, "to_dict"):
        sender = sender.to_dict()
    from_num = sender.get("phone_number")
    text = payload.get("text") or ""

    if not from_num:
        return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)

    _LOGGER.info("[Webhook] inbound message %s from %s", payload.get("id"), from_num)
    background.add_task(
        respond,
        request.app.state.conversation,
        from_num,
        text,
        sender.get("name"),
        payload.get("id"),
    )
    return PlainTextResponse("OK")


class ReminderIn(BaseModel):
    address: str = Field(min_length=1)
    message: str = Field(min_length=1)
    remind_at: datetime


@app.post("/v1/reminders", status_code=status.HTTP_201_CREATED)
async def create_reminder(body: ReminderIn):
    if body.remind_at.tzinfo is None:
        raise HTTPException(422, "remind_at must include a timezone offset")
    if body.remind_at <= datetime.now(tz=body.remind_at.tzinfo):
        raise HTTPException(422, "remind_at must be in the future")
    try:
        user = await db.upsert_user(body.address)
        reminder = await lifecycle.create_one_time(user, body.message, body.remind_at)
    except ValidationError as exc:
        raise HTTPException(422, str(exc))
    except PersistenceError:
        _LOGGER.exception("Could not create reminder via API for %s", body.address)
        raise HTTPException(503, "DB error")
    return {
        "id": reminder.id,
        "address": user.address,
        "message": reminder.message,
        "remind_at": reminder.fire_at.isoformat(),
    }
