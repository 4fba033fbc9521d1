import pytest

from app.services.sessions import SessionStore, Stage


def test_start_and_await_time(clock):
    store = SessionStore(ttl_seconds=60, clock=clock)
    assert store.get("+1") is None

    store.start("+1")
    assert store.get("+1").stage == Stage.AWAITING_MESSAGE

    store.await_time("+1", "Water the plants")
    session = store.get("+1")
    assert session.stage == Stage.AWAITING_TIME
    assert session.pending_message == "Water the plants"

    store.clear("+1")
    assert store.get("+1") is None


def test_sessions_expire_after_ttl(clock):
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.start("+1")
    clock.advance(seconds=59)
    assert store.get("+1") is not None
    clock.advance(seconds=2)
    assert store.get("+1") is None


def test_touch_extends_session(clock):
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.start("+1")
    clock.advance(seconds=50)
    store.touch("+1")
    clock.advance(seconds=50)
    assert store.get("+1") is not None


def test_sessions_are_per_address(clock):
    store = SessionStore(clock=clock)
    store.start("+1")
    assert store.get("+2") is None


def test_city_prompt_is_consumed_once(clock):
    store = SessionStore(clock=clock)
    assert store.take_city_prompt("+1") is False
    store.open_city_prompt("+1")
    assert store.has_city_prompt("+1")
    assert store.take_city_prompt("+1") is True
    assert store.take_city_prompt("+1") is False


def test_city_prompt_expires(clock):
    store = SessionStore(ttl_seconds=30, clock=clock)
    store.open_city_prompt("+1")
    clock.advance(minutes=1)
    assert store.take_city_prompt("+1") is False


def test_seen_suppresses_repeated_message_ids(clock):
    store = SessionStore(clock=clock, dedup_ttl_seconds=120)
    assert store.seen("msg-1") is False
    assert store.seen("msg-1") is True
    assert store.seen("msg-2") is False
    assert store.seen(None) is False
    assert store.seen(None) is False

    clock.advance(minutes=3)
    assert store.seen("msg-1") is False


def test_lock_is_stable_per_address(clock):
    store = SessionStore(clock=clock)
    assert store.lock("+1") is store.lock("+1")
    assert store.lock("+1") is not store.lock("+2")


def test_prune_drops_idle_state(clock):
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.start("+1")
    store.open_city_prompt("+1")
    store.lock("+1")
    store.start("+2")

    clock.advance(seconds=30)
    store.touch("+2")
    clock.advance(seconds=31)
    store.prune()

    assert "+1" not in store._sessions
    assert "+1" not in store._city_prompts
    assert "+1" not in store._locks
    assert store.get("+2") is not None


@pytest.mark.asyncio
async def test_prune_keeps_locks_in_use(clock):
    store = SessionStore(clock=clock)
    async with store.hold("+1"):
        lock = store.lock("+1")
        assert lock.locked()
        store.prune()
        assert store.lock("+1") is lock
    store.prune()
    assert "+1" not in store._locks


def test_seen_prunes_expired_sessions(clock):
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.start("+1")
    clock.advance(minutes=2)
    store.seen("msg-1")
    assert "+1" not in store._sessions
