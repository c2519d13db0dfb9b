import pytest

from relaybot.db import build_session_factory
from relaybot.errors import AssistantBackendError, BreakerOpenError, DurableStoreError
from relaybot.models import Base
from relaybot.resilience import CallGuard, CircuitBreaker
from relaybot.sessions import SessionRegistry, session_key
from relaybot.storage import DurableStore, MemoryStorage
from tests.utils import FakeAssistant, FlakyStore, make_guard, make_registry, no_sleep


@pytest.mark.asyncio
async def test_start_then_get_returns_thread_and_ai_mode():
    registry = make_registry()
    assert await registry.get_session(42) is None

    thread_id = await registry.start_session(42)
    session = await registry.get_session(42)

    assert thread_id == "thread_abc"
    assert session.thread_id == "thread_abc"
    assert session.handoff is False
    assert (await registry.get_session("42")).thread_id == "thread_abc"


@pytest.mark.asyncio
async def test_set_handoff_without_session_returns_false_and_creates_nothing():
    registry = make_registry()
    assert await registry.set_handoff(99, True) is False
    assert await registry.get_session(99) is None
    assert await registry.has_session(99) is False


@pytest.mark.asyncio
async def test_set_handoff_is_idempotent_and_records_first_transfer():
    registry = make_registry()
    await registry.start_session(1)

    assert await registry.set_handoff(1, True) is True
    first = await registry.get_session(1)
    assert await registry.set_handoff(1, True) is True
    second = await registry.get_session(1)

    assert second.handoff is True
    assert second.transferred_to_operator is True
    assert second.operator_transfer_time == first.operator_transfer_time
    assert second.updated_at >= first.updated_at
    assert second.thread_id == first.thread_id


@pytest.mark.asyncio
async def test_last_start_wins():
    registry = make_registry(assistant=FakeAssistant(thread_ids=["t1", "t2"]))
    await registry.start_session(5)
    await registry.set_handoff(5, True)
    await registry.start_session(5)

    session = await registry.get_session(5)
    assert session.thread_id == "t2"
    assert session.handoff is False


@pytest.mark.asyncio
async def test_start_failure_creates_no_session():
    registry = make_registry(assistant=FakeAssistant(create_failures=5))
    with pytest.raises(AssistantBackendError):
        await registry.start_session(3)
    assert await registry.get_session(3) is None


@pytest.mark.asyncio
async def test_cold_fast_tiers_fall_through_to_durable_and_promote(sqlite_engine):
    cache = MemoryStorage()
    registry = make_registry(cache=cache, engine=sqlite_engine)
    await registry.start_session(42)

    await registry.evict(42)
    assert not registry.in_memory(42)
    assert await cache.get(session_key("42")) is None

    session = await registry.get_session(42)
    assert session.thread_id == "thread_abc"
    assert registry.in_memory(42)
    assert await cache.get(session_key("42")) is not None


@pytest.mark.asyncio
async def test_cache_hit_warms_memory():
    cache = MemoryStorage()
    registry = make_registry(cache=cache)
    await registry.start_session(8)
    registry._memory.clear()

    assert (await registry.get_session(8)).thread_id == "thread_abc"
    assert registry.in_memory(8)


@pytest.mark.asyncio
async def test_cache_failure_does_not_fail_writes_or_reads(sqlite_engine):
    cache = FlakyStore()
    cache.down = True
    registry = make_registry(cache=cache, engine=sqlite_engine)

    await registry.start_session(11)
    registry._memory.clear()
    session = await registry.get_session(11)

    assert session is not None
    assert session.thread_id == "thread_abc"


@pytest.mark.asyncio
async def test_durable_failure_is_not_acknowledged(sqlite_engine):
    registry = make_registry(engine=sqlite_engine)
    await registry.start_session(12)
    # Without tables every durable call fails.
    Base.metadata.drop_all(bind=sqlite_engine)

    with pytest.raises(DurableStoreError):
        await registry.set_handoff(12, True)
    assert (await registry.get_session(12)).handoff is False


@pytest.mark.asyncio
async def test_list_active_sessions_prefers_durable(sqlite_engine):
    registry = make_registry(
        assistant=FakeAssistant(thread_ids=["a", "b"]), engine=sqlite_engine
    )
    await registry.start_session(1)
    await registry.start_session(2)
    registry._memory.clear()

    ids = sorted(s.conversation_id for s in await registry.list_active_sessions())
    assert ids == ["1", "2"]


@pytest.mark.asyncio
async def test_list_active_sessions_from_memory_without_durable():
    registry = make_registry(assistant=FakeAssistant(thread_ids=["a", "b"]))
    await registry.start_session(1)
    await registry.start_session(2)
    await registry.set_handoff(1, True)

    sessions = await registry.list_active_sessions()
    assert [s.conversation_id for s in sessions] == ["1", "2"]


@pytest.mark.asyncio
async def test_delete_session_removes_every_tier(sqlite_engine):
    cache = MemoryStorage()
    registry = make_registry(cache=cache, engine=sqlite_engine)
    await registry.start_session(9)

    assert await registry.delete_session(9) is True
    assert await registry.get_session(9) is None
    assert await cache.exists(session_key("9")) is False
    assert await registry.delete_session(9) is False


@pytest.mark.asyncio
async def test_open_durable_breaker_surfaces_on_write(sqlite_engine):
    durable = DurableStore(build_session_factory(sqlite_engine))
    breaker = CircuitBreaker("durable_store", failure_threshold=1, reset_timeout=60)
    breaker.record_failure()
    registry = SessionRegistry(
        assistant=FakeAssistant(),
        assistant_guard=make_guard("assistant"),
        cache=MemoryStorage(),
        cache_guard=make_guard("cache"),
        durable=durable,
        durable_guard=CallGuard(breaker, max_attempts=1, sleep=no_sleep),
    )
    with pytest.raises(BreakerOpenError):
        await registry.start_session(1)
    assert not registry.in_memory(1)


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_handoff_written_by_one_instance_reaches_another(sqlite_engine):
    cache = MemoryStorage()
    clock = _Clock()
    first = make_registry(cache=cache, engine=sqlite_engine, memory_ttl_seconds=2, clock=clock)
    second = make_registry(cache=cache, engine=sqlite_engine, memory_ttl_seconds=2, clock=clock)

    await first.start_session(5)
    assert (await second.get_session(5)).handoff is False

    assert await first.set_handoff(5, True) is True
    clock.now += 3

    assert (await second.get_session(5)).handoff is True


@pytest.mark.asyncio
async def test_memory_tier_is_capped_least_recently_used_first():
    registry = make_registry(
        assistant=FakeAssistant(thread_ids=["a", "b", "c"]), memory_max_entries=2
    )
    await registry.start_session(1)
    await registry.start_session(2)
    assert registry.in_memory(1)
    await registry.start_session(3)

    assert registry.in_memory(1) and registry.in_memory(3)
    assert not registry.in_memory(2)
    # The evicted entry is still served from the cache tier.
    assert (await registry.get_session(2)).thread_id == "b"


@pytest.mark.asyncio
async def test_listing_without_durable_includes_sessions_only_in_cache():
    clock = _Clock()
    registry = make_registry(
        assistant=FakeAssistant(thread_ids=["a", "b"]), memory_ttl_seconds=1, clock=clock
    )
    await registry.start_session(1)
    clock.now += 5
    await registry.start_session(2)

    assert not registry.in_memory(1)
    sessions = await registry.list_active_sessions()
    assert sorted(s.conversation_id for s in sessions) == ["1", "2"]


@pytest.mark.asyncio
async def test_durable_call_without_guard_raises():
    registry = make_registry()
    with pytest.raises(RuntimeError):
        await registry._durable_call("get", lambda: None)
