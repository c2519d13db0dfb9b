"""
Redis-backed variant of the key/value store.

The client is created lazily on first use; a connection or timeout error
drops it so the next call reconnects.
"""

from __future__ import annotations

from typing import Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from relaybot.errors import StorageConnectionError
from relaybot.logging_config import logger

from .base import KeyValueStore


class RedisStorage(KeyValueStore):
    name = "redis"

    def __init__(
        self,
        url: str | None = None,
        *,
        client: Redis | None = None,
        connect_timeout: float = 5.0,
        socket_timeout: float = 5.0,
        client_factory: Callable[[], Redis] | None = None,
    ) -> None:
        if url is None and client is None and client_factory is None:
            raise ValueError("RedisStorage needs a url, a client or a client_factory")
        self._url = url
        self._client = client
        self._connect_timeout = connect_timeout
        self._socket_timeout = socket_timeout
        self._client_factory = client_factory

    def _connect(self) -> Redis:
        if self._client is None:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                self._client = Redis.from_url(
                    self._url,
                    decode_responses=True,
                    socket_connect_timeout=self._connect_timeout,
                    socket_timeout=self._socket_timeout,
                )
        return self._client

    async def _connection_lost(self, exc: Exception) -> StorageConnectionError:
        logger.warning("Redis connection problem: %s", exc)
        # Only drop clients this adapter can rebuild.
        if self._url is not None or self._client_factory is not None:
            stale, self._client = self._client, None
            if stale is not None:
                try:
                    await stale.aclose()
                except (RedisConnectionError, RedisTimeoutError, OSError) as close_exc:
                    logger.debug("Closing dropped Redis client failed: %s", close_exc)
        return StorageConnectionError(f"Redis unavailable: {exc}")

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._connect().get(key)
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise await self._connection_lost(exc) from exc

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._connect().set(key, value, ex=ttl_seconds if ttl_seconds > 0 else None)
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise await self._connection_lost(exc) from exc

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        # SET key value NX EX ttl
        try:
            stored = await self._connect().set(
                key, value, nx=True, ex=ttl_seconds if ttl_seconds > 0 else None
            )
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise await self._connection_lost(exc) from exc
        return bool(stored)

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._connect().exists(key))
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise await self._connection_lost(exc) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._connect().delete(key)
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise await self._connection_lost(exc) from exc

    async def list_keys(self, prefix: str) -> list[str]:
        try:
            return [key async for key in self._connect().scan_iter(match=f"{prefix}*")]
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise await self._connection_lost(exc) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._connect().ping())
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise await self._connection_lost(exc) from exc

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["RedisStorage"]
