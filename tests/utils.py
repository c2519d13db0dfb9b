from __future__ import annotations

import asyncio
import fnmatch
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from relaybot.db import build_session_factory
from relaybot.errors import AssistantBackendError, StorageConnectionError, TransportError
from relaybot.models import Base
from relaybot.resilience import CallGuard, CircuitBreaker
from relaybot.runtime import build_runtime
from relaybot.sessions import SessionRegistry
from relaybot.settings import Settings
from relaybot.storage.base import KeyValueStore
from relaybot.storage.durable import DurableStore
from relaybot.storage.memory import MemoryStorage


async def no_sleep(_delay: float) -> None:
    return None


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "TELEGRAM_TOKEN": "test-token",
        "OPENAI_API_KEY": "sk-test",
        "ASSISTANT_ID": "asst_test",
        "STORAGE_BACKEND": "memory",
        "DATABASE_URL": None,
        "DELIVERY_MODE": "webhook",
        "WEBHOOK_URL": None,
        "RETRY_BASE_DELAY": 0.0,
        "TYPING_INTERVAL": 0.01,
        "INSTANCE_HEARTBEAT_INTERVAL": 60.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_sqlite_engine():
    """In-memory SQLite shared across threads, with the relay schema created."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


class FakeAssistant:
    """Assistant backend double with scripted replies and failures."""

    def __init__(
        self,
        *,
        thread_ids: Optional[List[str]] = None,
        replies: Optional[List[Optional[str]]] = None,
        run_failures: int = 0,
        create_failures: int = 0,
    ) -> None:
        self._thread_ids = list(thread_ids or [])
        self._replies = list(replies or [])
        self.run_failures = run_failures
        self.create_failures = create_failures
        self.created = 0
        self.added: List[Tuple[str, str]] = []
        self.run_calls = 0
        self.healthy = True
        self.run_gate: Optional[asyncio.Event] = None

    async def create_thread(self) -> str:
        if self.create_failures > 0:
            self.create_failures -= 1
            raise AssistantBackendError("create_thread failed")
        self.created += 1
        if self._thread_ids:
            return self._thread_ids.pop(0)
        return f"thread_{self.created}"

    async def add_message(self, thread_id: str, text: str) -> None:
        self.added.append((thread_id, text))

    async def run_and_await_reply(self, thread_id: str) -> Optional[str]:
        self.run_calls += 1
        if self.run_gate is not None:
            await self.run_gate.wait()
        if self.run_failures > 0:
            self.run_failures -= 1
            raise AssistantBackendError("run failed")
        if self._replies:
            return self._replies.pop(0)
        return f"reply {self.run_calls}"

    async def ping(self) -> bool:
        if not self.healthy:
            raise AssistantBackendError("assistant down")
        return True


class FakeTransport:
    """Records outgoing messages instead of calling the transport."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.actions: List[Tuple[str, str]] = []
        self.webhooks: List[str] = []
        self.fail_sends = 0
        self.closed = False

    async def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        buttons: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> Dict[str, Any]:
        if self.fail_sends > 0:
            self.fail_sends -= 1
            raise TransportError("send failed")
        message = {"chat_id": str(chat_id), "text": text, "buttons": list(buttons or [])}
        self.sent.append(message)
        return message

    async def send_chat_action(self, chat_id: str, action: str = "typing") -> None:
        self.actions.append((str(chat_id), action))

    async def get_updates(self, *, offset: Optional[int] = None, timeout: int = 30):
        return []

    async def set_webhook(self, url: str) -> bool:
        self.webhooks.append(url)
        return True

    async def delete_webhook(self, *, drop_pending_updates: bool = False) -> bool:
        return True

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True

    def texts_to(self, chat_id: Any) -> List[str]:
        return [m["text"] for m in self.sent if m["chat_id"] == str(chat_id)]


class FlakyStore(MemoryStorage):
    """Memory store that can be switched into a connection-failure mode."""

    name = "flaky"

    def __init__(self) -> None:
        super().__init__()
        self.down = False
        self.calls = 0

    def _check(self) -> None:
        self.calls += 1
        if self.down:
            raise StorageConnectionError("cache unreachable")

    async def get(self, key: str):
        self._check()
        return await super().get(key)

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check()
        await super().set_with_expiry(key, value, ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self._check()
        return await super().set_if_absent(key, value, ttl_seconds)

    async def exists(self, key: str) -> bool:
        self._check()
        return await super().exists(key)

    async def delete(self, key: str) -> None:
        self._check()
        await super().delete(key)

    async def ping(self) -> bool:
        self._check()
        return True


class InMemoryRedis:
    """Subset of redis.asyncio.Redis used by RedisStorage."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.closed = False

    async def get(self, key: str):
        return self._data.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False):
        if nx and key in self._data:
            return None
        self._data[key] = value
        self.ttls[key] = ex
        return True

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if key in self._data)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan_iter(self, match: Optional[str] = None):
        for key in list(self._data):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


def build_test_runtime(
    *,
    settings: Optional[Settings] = None,
    assistant: Optional[FakeAssistant] = None,
    transport: Optional[FakeTransport] = None,
    cache: Optional[KeyValueStore] = None,
    with_durable: bool = False,
    **setting_overrides: Any,
):
    settings = settings or make_settings(**setting_overrides)
    return build_runtime(
        settings,
        assistant=assistant or FakeAssistant(),
        transport=transport or FakeTransport(),
        cache=cache,
        engine=make_sqlite_engine() if with_durable else None,
        sleep=no_sleep,
        instance_id="test-instance",
    )


def make_guard(name: str, attempts: int = 3, threshold: int = 5) -> CallGuard:
    return CallGuard(
        CircuitBreaker(name, failure_threshold=threshold, reset_timeout=30),
        max_attempts=attempts,
        base_delay=0,
        sleep=no_sleep,
    )


def make_registry(*, assistant=None, cache=None, engine=None, **kwargs) -> SessionRegistry:
    durable = DurableStore(build_session_factory(engine)) if engine is not None else None
    return SessionRegistry(
        assistant=assistant or FakeAssistant(thread_ids=["thread_abc"]),
        assistant_guard=make_guard("assistant"),
        cache=cache or MemoryStorage(),
        cache_guard=make_guard("cache", attempts=1),
        durable=durable,
        durable_guard=make_guard("durable_store") if durable is not None else None,
        cache_ttl_seconds=3600,
        **kwargs,
    )


class YieldingStore(MemoryStorage):
    """Memory store that suspends once per call, like a networked store."""

    name = "yielding"

    async def get(self, key: str):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        await asyncio.sleep(0)
        await super().set_with_expiry(key, value, ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        await asyncio.sleep(0)
        return await super().set_if_absent(key, value, ttl_seconds)

    async def exists(self, key: str) -> bool:
        await asyncio.sleep(0)
        return await super().exists(key)
