"""
Explicit construction of every process-wide collaborator.

`build_runtime` wires storage tiers, breakers, the dispatch queue, the
session registry and the relay service from settings; the FastAPI app
holds the resulting `RelayRuntime` on `app.state`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import anyio
from sqlalchemy.engine import Engine

from relaybot.assistant import AssistantBackend, OpenAIAssistantClient
from relaybot.db import build_engine, build_session_factory
from relaybot.db.migration_runner import auto_upgrade_database, ensure_schema
from relaybot.dispatch import DispatchQueue
from relaybot.errors import DependencyError
from relaybot.instances import InstanceManager
from relaybot.logging_config import logger
from relaybot.relay import EventDeduplicator, RelayService
from relaybot.resilience import CallGuard, CircuitBreaker
from relaybot.sessions import SessionRegistry
from relaybot.settings import Settings
from relaybot.storage import (
    DurableStore,
    GuardedMessageLog,
    InMemoryMessageLog,
    KeyValueStore,
    MemoryStorage,
    RedisStorage,
)
from relaybot.transport import TelegramClient, UpdatePoller

# Cache reads sit on the hot path; fail over to slower tiers quickly.
CACHE_RETRY_ATTEMPTS = 2
CACHE_RETRY_DELAY = 0.1

BREAKER_NAMES = ("assistant", "durable_store", "cache", "transport")


@dataclass
class RelayRuntime:
    settings: Settings
    cache: KeyValueStore
    assistant: AssistantBackend
    transport: TelegramClient
    breakers: Dict[str, CircuitBreaker]
    guards: Dict[str, CallGuard]
    queue: DispatchQueue
    registry: SessionRegistry
    relay: RelayService
    instances: InstanceManager
    message_log: Any
    durable: Optional[DurableStore] = None
    engine: Optional[Engine] = None
    poller: Optional[UpdatePoller] = None
    started: bool = field(default=False, init=False)

    async def start(self) -> None:
        if self.started:
            return
        if self.engine is not None:
            engine = self.engine
            database_url = self.settings.database_url or ""

            def _prepare_schema() -> None:
                auto_upgrade_database(
                    database_url, enabled=self.settings.auto_apply_db_migrations
                )
                ensure_schema(engine)

            await anyio.to_thread.run_sync(_prepare_schema)

        await self.instances.start()

        if self.settings.delivery_mode == "polling":
            self.poller = UpdatePoller(
                self.transport,
                self.relay.accept_update,
                timeout=self.settings.polling_timeout,
            )
            self.poller.start()
        elif self.settings.webhook_url:
            try:
                await self.transport.set_webhook(self.settings.webhook_url)
                logger.info("Webhook registered at %s", self.settings.webhook_url)
            except DependencyError as exc:
                logger.error("Webhook registration failed: %s", exc)

        self.started = True
        logger.info(
            "Relay runtime started (storage=%s, durable=%s, delivery=%s, concurrency=%d)",
            self.cache.name,
            "on" if self.durable is not None else "off",
            self.settings.delivery_mode,
            self.queue.concurrency,
        )

    async def stop(self) -> None:
        if self.poller is not None:
            await self.poller.stop()
            self.poller = None
        await self.relay.close()
        await self.instances.stop()
        await self.transport.close()
        await self.cache.close()
        if self.engine is not None:
            self.engine.dispose()
        self.started = False
        logger.info("Relay runtime stopped")

    async def _check(self, name: str, check: Callable[[], Awaitable[Any]]) -> Dict[str, Any]:
        try:
            await asyncio.wait_for(check(), timeout=5.0)
        except Exception as exc:
            logger.warning("Health check %s failed: %s", name, exc)
            return {"status": "error", "detail": str(exc)}
        return {"status": "ok"}

    async def health(self) -> Dict[str, Any]:
        storage = await self._check("storage", self.cache.ping)
        storage["backend"] = self.cache.name
        if self.durable is not None:
            durable = await self._check("durable_store", self.durable.ping)
        else:
            durable = {"status": "disabled"}
        assistant = await self._check("assistant", self.assistant.ping)
        breakers = {name: breaker.snapshot() for name, breaker in self.breakers.items()}

        degraded = (
            storage["status"] != "ok"
            or durable["status"] == "error"
            or assistant["status"] != "ok"
            or any(b["state"] != "closed" for b in breakers.values())
        )
        return {
            "status": "degraded" if degraded else "ok",
            "instance_id": self.instances.instance_id,
            "storage": storage,
            "durable_store": durable,
            "assistant": assistant,
            "breakers": breakers,
            "queue": self.queue.stats(),
        }


def _build_cache(settings: Settings) -> KeyValueStore:
    if settings.storage_backend == "redis":
        return RedisStorage(
            settings.redis_url,
            connect_timeout=settings.redis_connect_timeout,
            socket_timeout=settings.redis_socket_timeout,
        )
    return MemoryStorage()


def build_runtime(
    settings: Settings,
    *,
    assistant: Optional[AssistantBackend] = None,
    transport: Optional[TelegramClient] = None,
    cache: Optional[KeyValueStore] = None,
    engine: Optional[Engine] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    instance_id: Optional[str] = None,
) -> RelayRuntime:
    """
    Build the runtime from settings. Tests pass fakes for the assistant,
    transport and cache, and an in-memory SQLite engine.
    """
    settings.validate_required()

    breakers = {
        name: CircuitBreaker(
            name,
            failure_threshold=settings.breaker_failure_threshold,
            reset_timeout=settings.breaker_reset_timeout,
        )
        for name in BREAKER_NAMES
    }

    def _guard(name: str, attempts: int, delay: float) -> CallGuard:
        return CallGuard(
            breakers[name],
            max_attempts=attempts,
            base_delay=delay,
            retry_on=(DependencyError,),
            sleep=sleep,
        )

    guards = {
        "assistant": _guard("assistant", settings.retry_max_attempts, settings.retry_base_delay),
        "durable_store": _guard(
            "durable_store", settings.retry_max_attempts, settings.retry_base_delay
        ),
        "cache": _guard("cache", CACHE_RETRY_ATTEMPTS, CACHE_RETRY_DELAY),
        "transport": _guard("transport", settings.retry_max_attempts, settings.retry_base_delay),
    }

    cache = cache or _build_cache(settings)

    durable: Optional[DurableStore] = None
    if engine is None and settings.database_url:
        engine = build_engine(settings.database_url)
    if engine is not None:
        durable = DurableStore(build_session_factory(engine))

    if assistant is None:
        assistant = OpenAIAssistantClient(
            api_key=settings.openai_api_key or "",
            assistant_id=settings.assistant_id or "",
            base_url=settings.openai_base_url,
            timeout=settings.assistant_timeout,
            poll_interval_ms=settings.assistant_poll_interval_ms,
        )
    if transport is None:
        transport = TelegramClient(
            settings.telegram_token or "",
            api_base=settings.telegram_api_base,
            timeout=settings.transport_timeout,
        )

    if durable is not None:
        message_log: Any = GuardedMessageLog(durable, guards["durable_store"])
    else:
        message_log = InMemoryMessageLog()

    registry = SessionRegistry(
        assistant=assistant,
        assistant_guard=guards["assistant"],
        cache=cache,
        cache_guard=guards["cache"],
        durable=durable,
        durable_guard=guards["durable_store"] if durable is not None else None,
        cache_ttl_seconds=settings.session_cache_ttl_seconds,
        memory_ttl_seconds=settings.session_memory_ttl_seconds,
        memory_max_entries=settings.session_memory_max_entries,
    )
    queue = DispatchQueue(settings.dispatch_concurrency)
    relay = RelayService(
        registry=registry,
        assistant=assistant,
        assistant_guard=guards["assistant"],
        transport=transport,
        transport_guard=guards["transport"],
        queue=queue,
        message_log=message_log,
        dedupe=EventDeduplicator(
            cache, guards["cache"], ttl_seconds=settings.dedupe_ttl_seconds
        ),
        trigger_phrase=settings.handoff_trigger_phrase,
        transfer_message=settings.operator_transfer_message,
        contact_link=settings.resolved_operator_chat_link,
        button_text=settings.operator_button_text,
        operator_chat_id=settings.operator_chat_id,
        typing_interval=settings.typing_interval,
        history_limit=settings.history_limit,
    )
    instances = InstanceManager(
        durable,
        instance_id=instance_id,
        heartbeat_interval=settings.instance_heartbeat_interval,
        stale_timeout=settings.instance_stale_timeout,
        guard=guards["durable_store"] if durable is not None else None,
    )
    return RelayRuntime(
        settings=settings,
        cache=cache,
        assistant=assistant,
        transport=transport,
        breakers=breakers,
        guards=guards,
        queue=queue,
        registry=registry,
        relay=relay,
        instances=instances,
        message_log=message_log,
        durable=durable,
        engine=engine,
    )


__all__ = ["BREAKER_NAMES", "RelayRuntime", "build_runtime"]
