"""
Uniform key/value contract shared by the process-local and networked
storage variants.
"""

from __future__ import annotations

import abc
import json
from typing import Any, Optional


class KeyValueStore(abc.ABC):
    """
    Async key/value store with per-key expiry.

    `get` on a missing key returns None. Connectivity problems of networked
    variants raise `StorageConnectionError` instead.
    """

    name: str = "kv"

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abc.abstractmethod
    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abc.abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Store `value` only when `key` is absent, atomically. True if stored."""

    @abc.abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abc.abstractmethod
    async def delete(self, key: str) -> None: ...

    @abc.abstractmethod
    async def list_keys(self, prefix: str) -> list[str]: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Load a JSON value. Missing keys and malformed payloads both read as None.
        """
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.set_with_expiry(
            key, json.dumps(value, ensure_ascii=False), ttl_seconds
        )


__all__ = ["KeyValueStore"]
