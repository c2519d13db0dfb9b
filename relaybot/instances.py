"""
Liveness registration of running relay processes in the durable store.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import socket
import uuid
from typing import Awaitable, Callable, Optional, TypeVar

from relaybot.background import wait_or_stop
from relaybot.errors import BreakerOpenError, DependencyError
from relaybot.logging_config import logger
from relaybot.resilience import CallGuard
from relaybot.storage.durable import DurableStore

T = TypeVar("T")


def new_instance_id() -> str:
    return uuid.uuid4().hex


class InstanceManager:
    def __init__(
        self,
        durable: Optional[DurableStore],
        *,
        instance_id: Optional[str] = None,
        hostname: Optional[str] = None,
        heartbeat_interval: float = 10.0,
        stale_timeout: float = 30.0,
        guard: Optional[CallGuard] = None,
    ) -> None:
        self._durable = durable
        self._guard = guard
        self.instance_id = instance_id or new_instance_id()
        self.hostname = hostname or socket.gethostname()
        self.heartbeat_interval = heartbeat_interval
        self.stale_timeout = stale_timeout
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.registered = False

    async def _call(self, what: str, op: Callable[[], Awaitable[T]]) -> T:
        if self._guard is None:
            return await op()
        return await self._guard.call(op, name=f"instances.{what}")

    def _cutoff(self) -> dt.datetime:
        return dt.datetime.now(dt.timezone.utc) - dt.timedelta(seconds=self.stale_timeout)

    async def register(self) -> None:
        """
        Replace earlier registrations from this host, purge stale ones from
        any host, then insert this instance.
        """
        if self._durable is None:
            logger.info("No durable store configured; instance registry disabled")
            return
        durable = self._durable
        removed = await self._call(
            "replace", lambda: durable.delete_instances_for_host(self.hostname)
        )
        purged = await self._call("purge", lambda: durable.purge_stale_instances(self._cutoff()))
        await self._call(
            "register", lambda: durable.register_instance(self.instance_id, self.hostname)
        )
        self.registered = True
        logger.info(
            "Registered instance %s on %s (replaced=%d, purged_stale=%d)",
            self.instance_id,
            self.hostname,
            removed,
            purged,
        )

    async def beat(self) -> None:
        if self._durable is None:
            return
        durable = self._durable
        if not await self._call("heartbeat", lambda: durable.heartbeat(self.instance_id)):
            # Another instance purged our row while we were unreachable.
            logger.warning("Instance %s missing from registry; re-registering", self.instance_id)
            await self._call(
                "register", lambda: durable.register_instance(self.instance_id, self.hostname)
            )
        await self._call("purge", lambda: durable.purge_stale_instances(self._cutoff()))

    async def _loop(self) -> None:
        while not await wait_or_stop(self._stop, self.heartbeat_interval):
            try:
                await self.beat()
            except (DependencyError, BreakerOpenError) as exc:
                logger.warning("Instance heartbeat failed: %s", exc)

    async def start(self) -> None:
        if self._durable is None:
            logger.info("No durable store configured; instance registry disabled")
            return
        try:
            await self.register()
        except (DependencyError, BreakerOpenError) as exc:
            logger.error("Instance registration failed: %s", exc)
        self._task = asyncio.create_task(self._loop(), name="instance-heartbeat")

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        durable = self._durable
        if durable is not None and self.registered:
            try:
                await self._call(
                    "unregister", lambda: durable.unregister_instance(self.instance_id)
                )
                logger.info("Unregistered instance %s", self.instance_id)
            except (DependencyError, BreakerOpenError) as exc:
                logger.warning("Instance unregister failed: %s", exc)
            self.registered = False


__all__ = ["InstanceManager", "new_instance_id"]
