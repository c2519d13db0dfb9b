from __future__ import annotations

import asyncio
import time
from typing import Optional

from .base import KeyValueStore


class MemoryStorage(KeyValueStore):
    """
    Process-local store. Each key owns a `loop.call_later` timer that removes
    it on expiry; the deadline is also checked on read in case the loop has
    not yet run the timer.
    """

    name = "memory"

    def __init__(self, *, clock=time.monotonic) -> None:
        self._data: dict[str, str] = {}
        self._deadlines: dict[str, float] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._clock = clock

    def _cancel_timer(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _expire(self, key: str) -> None:
        self._timers.pop(key, None)
        self._data.pop(key, None)
        self._deadlines.pop(key, None)

    def _alive(self, key: str) -> bool:
        if key not in self._data:
            return False
        deadline = self._deadlines.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._cancel_timer(key)
            self._expire(key)
            return False
        return True

    async def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        return self._data[key]

    def _store(self, key: str, value: str, ttl_seconds: int) -> None:
        self._cancel_timer(key)
        self._data[key] = value
        if ttl_seconds and ttl_seconds > 0:
            self._deadlines[key] = self._clock() + ttl_seconds
            loop = asyncio.get_running_loop()
            self._timers[key] = loop.call_later(ttl_seconds, self._expire, key)
        else:
            self._deadlines.pop(key, None)

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store(key, value, ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if self._alive(key):
            return False
        # No await between the check and the write.
        self._store(key, value, ttl_seconds)
        return True

    async def exists(self, key: str) -> bool:
        return self._alive(key)

    async def delete(self, key: str) -> None:
        self._cancel_timer(key)
        self._expire(key)

    async def list_keys(self, prefix: str) -> list[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._alive(key)]

    async def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()


__all__ = ["MemoryStorage"]
