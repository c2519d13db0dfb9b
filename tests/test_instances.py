import datetime as dt

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from relaybot.db import build_session_factory
from relaybot.errors import BreakerOpenError, DurableStoreError
from relaybot.instances import InstanceManager
from relaybot.models import BotInstance
from relaybot.storage import DurableStore
from tests.utils import make_guard


@pytest.fixture
def durable(sqlite_engine):
    return DurableStore(build_session_factory(sqlite_engine))


def _age_heartbeat(engine, instance_id, minutes):
    stamp = dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=minutes)
    with Session(engine) as db:
        db.execute(
            update(BotInstance)
            .where(BotInstance.instance_id == instance_id)
            .values(last_heartbeat=stamp)
        )
        db.commit()


@pytest.mark.asyncio
async def test_register_replaces_same_host_and_purges_stale(durable, sqlite_engine):
    await durable.register_instance("old-same-host", "host-a")
    await durable.register_instance("stale-other-host", "host-b")
    await durable.register_instance("fresh-other-host", "host-c")
    _age_heartbeat(sqlite_engine, "stale-other-host", minutes=10)

    manager = InstanceManager(durable, instance_id="me", hostname="host-a", stale_timeout=30)
    await manager.register()

    assert sorted(await durable.list_instances()) == ["fresh-other-host", "me"]
    assert manager.registered is True


@pytest.mark.asyncio
async def test_beat_re_registers_missing_row(durable):
    manager = InstanceManager(durable, instance_id="me", hostname="host-a")
    await manager.register()
    await durable.unregister_instance("me")

    await manager.beat()

    assert await durable.list_instances() == ["me"]


@pytest.mark.asyncio
async def test_start_and_stop_unregister(durable):
    manager = InstanceManager(
        durable, instance_id="me", hostname="host-a", heartbeat_interval=0.01
    )
    await manager.start()
    assert await durable.list_instances() == ["me"]

    await manager.stop()
    assert await durable.list_instances() == []
    assert manager.registered is False


@pytest.mark.asyncio
async def test_without_durable_store_everything_is_a_no_op():
    manager = InstanceManager(None, instance_id="me")
    await manager.start()
    await manager.beat()
    await manager.stop()
    assert manager.registered is False


class _FailingHeartbeatStore(DurableStore):
    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.heartbeats = 0

    async def heartbeat(self, instance_id):
        self.heartbeats += 1
        raise DurableStoreError("database unavailable")


@pytest.mark.asyncio
async def test_instance_calls_go_through_the_durable_guard(sqlite_engine):
    store = _FailingHeartbeatStore(build_session_factory(sqlite_engine))
    guard = make_guard("durable_store", attempts=2, threshold=1)
    manager = InstanceManager(store, instance_id="me", hostname="host-a", guard=guard)
    await manager.register()

    with pytest.raises(DurableStoreError):
        await manager.beat()
    assert store.heartbeats == 2

    # The opened breaker now rejects calls without touching the store.
    with pytest.raises(BreakerOpenError):
        await manager.beat()
    assert store.heartbeats == 2
