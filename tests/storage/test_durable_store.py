import datetime as dt

import pytest

from relaybot.db import build_session_factory
from relaybot.schemas import ConversationSession, MessageLogEntry, MessageRole
from relaybot.storage import DurableStore


def _store(engine) -> DurableStore:
    return DurableStore(build_session_factory(engine))


@pytest.mark.asyncio
async def test_upsert_and_get_session(sqlite_engine):
    store = _store(sqlite_engine)
    session = ConversationSession(conversation_id=42, thread_id="thread_abc")

    await store.upsert_session(session)
    loaded = await store.get_session("42")

    assert loaded is not None
    assert loaded.thread_id == "thread_abc"
    assert loaded.handoff is False
    assert loaded.created_at.tzinfo is not None

    await store.upsert_session(session.model_copy(update={"handoff": True}))
    assert (await store.get_session("42")).handoff is True
    assert len(await store.list_sessions()) == 1


@pytest.mark.asyncio
async def test_delete_session_reports_existence(sqlite_engine):
    store = _store(sqlite_engine)
    await store.upsert_session(ConversationSession(conversation_id="7", thread_id="t"))

    assert await store.delete_session("7") is True
    assert await store.delete_session("7") is False
    assert await store.get_session("7") is None


@pytest.mark.asyncio
async def test_recent_messages_returns_newest_oldest_first(sqlite_engine):
    store = _store(sqlite_engine)
    base = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
    for i in range(5):
        await store.append_message(
            MessageLogEntry(
                conversation_id="1",
                role=MessageRole.USER,
                content=f"m{i}",
                created_at=base + dt.timedelta(minutes=i),
            )
        )

    recent = await store.recent_messages("1", limit=3)
    assert [e.content for e in recent] == ["m2", "m3", "m4"]


@pytest.mark.asyncio
async def test_instance_registry_heartbeat_and_purge(sqlite_engine):
    store = _store(sqlite_engine)
    await store.register_instance("a", "host-1")
    await store.register_instance("b", "host-2")

    assert await store.heartbeat("a") is True
    assert await store.heartbeat("missing") is False

    future = dt.datetime.now(dt.timezone.utc) + dt.timedelta(minutes=1)
    assert await store.purge_stale_instances(future) == 2
    assert await store.list_instances() == []


@pytest.mark.asyncio
async def test_ping(sqlite_engine):
    assert await _store(sqlite_engine).ping() is True
