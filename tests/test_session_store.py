import asyncio

from estate_advisor.session_store import FlowState, PendingFlow, SessionStore


def test_sessions_are_created_lazily():
    store = SessionStore()
    assert store.peek("u1") is None
    session = store.get("u1")
    assert session.flow_state == FlowState.IDLE
    assert session.pending_flow == PendingFlow.NONE
    assert store.peek("u1") is session
    assert store.users() == ["u1"]


def test_lock_is_per_user():
    store = SessionStore()
    assert store.lock("a") is store.lock("a")
    assert store.lock("a") is not store.lock("b")
    assert isinstance(store.lock("a"), asyncio.Lock)


def test_idle_gap_at_threshold_resets_pending_flow():
    store = SessionStore(timeout_minutes=30)
    session = store.get("u1")
    session.touch(1_000.0)
    session.await_followup()

    assert store.expire_if_idle(session, 1_000.0 + 30 * 60) is True
    assert session.pending_flow == PendingFlow.NONE
    assert session.flow_state == FlowState.IDLE


def test_recent_activity_keeps_pending_flow():
    store = SessionStore(timeout_minutes=30)
    session = store.get("u1")
    session.touch(1_000.0)
    session.await_followup()

    assert store.expire_if_idle(session, 1_000.0 + 29 * 60) is False
    assert session.pending_flow == PendingFlow.AWAITING_FOLLOWUP_ANSWER


def test_touch_never_moves_backwards():
    session = SessionStore().get("u1")
    session.touch(200.0)
    session.touch(100.0)
    assert session.last_message_at == 200.0
