import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from relaybot.errors import StorageConnectionError
from relaybot.storage import RedisStorage
from tests.utils import InMemoryRedis


class BrokenRedis(InMemoryRedis):
    async def get(self, key: str):
        raise RedisConnectionError("connection refused")


@pytest.mark.asyncio
async def test_set_get_exists_delete_roundtrip_with_ttl():
    fake = InMemoryRedis()
    store = RedisStorage(client=fake)

    await store.set_with_expiry("relay:session:42", "payload", 120)
    assert fake.ttls["relay:session:42"] == 120
    assert await store.get("relay:session:42") == "payload"
    assert await store.exists("relay:session:42") is True

    await store.delete("relay:session:42")
    assert await store.get("relay:session:42") is None
    assert await store.exists("relay:session:42") is False


@pytest.mark.asyncio
async def test_list_keys_uses_prefix_scan():
    fake = InMemoryRedis()
    store = RedisStorage(client=fake)
    await store.set_with_expiry("relay:session:1", "a", 60)
    await store.set_with_expiry("relay:event:1", "1", 60)

    assert await store.list_keys("relay:session:") == ["relay:session:1"]


@pytest.mark.asyncio
async def test_connection_failure_is_distinct_from_missing_key():
    store = RedisStorage(client=BrokenRedis())
    with pytest.raises(StorageConnectionError):
        await store.get("anything")


@pytest.mark.asyncio
async def test_client_is_rebuilt_after_connection_loss():
    clients = [BrokenRedis(), InMemoryRedis()]
    created = []

    def factory():
        client = clients.pop(0)
        created.append(client)
        return client

    store = RedisStorage(client_factory=factory)
    with pytest.raises(StorageConnectionError):
        await store.get("k")
    assert created[0].closed is True
    assert await store.get("k") is None
    assert len(created) == 2
    assert created[1].closed is False


def test_requires_a_way_to_connect():
    with pytest.raises(ValueError):
        RedisStorage()


@pytest.mark.asyncio
async def test_set_if_absent_uses_nx_with_ttl():
    fake = InMemoryRedis()
    store = RedisStorage(client=fake)

    assert await store.set_if_absent("relay:event:1", "1", 3600) is True
    assert await store.set_if_absent("relay:event:1", "1", 3600) is False
    assert fake.ttls["relay:event:1"] == 3600
