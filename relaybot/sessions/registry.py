"""
Conversation session registry over three tiers.

Reads go memory -> cache -> durable and warm the faster tiers on a hit
further down. Writes go to the durable tier first and must succeed there;
the memory map and the TTL cache are then updated best-effort, because
they only speed up reads.

Memory entries expire after a few seconds and the map is capped, so a
write made by another instance becomes visible here through the shared
tiers.
"""

from __future__ import annotations

import datetime as dt
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from relaybot.assistant.base import AssistantBackend
from relaybot.errors import BreakerOpenError, DependencyError
from relaybot.logging_config import logger
from relaybot.resilience import CallGuard
from relaybot.schemas import ConversationSession, normalize_conversation_id
from relaybot.storage.base import KeyValueStore
from relaybot.storage.durable import DurableStore

SESSION_KEY_PREFIX = "relay:session:"
SESSION_KEY_TEMPLATE = SESSION_KEY_PREFIX + "{conversation_id}"

T = TypeVar("T")


def session_key(conversation_id: str) -> str:
    return SESSION_KEY_TEMPLATE.format(conversation_id=conversation_id)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class SessionRegistry:
    def __init__(
        self,
        *,
        assistant: AssistantBackend,
        assistant_guard: CallGuard,
        cache: KeyValueStore,
        cache_guard: CallGuard,
        durable: Optional[DurableStore] = None,
        durable_guard: Optional[CallGuard] = None,
        cache_ttl_seconds: int = 24 * 60 * 60,
        memory_ttl_seconds: float = 5.0,
        memory_max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if durable is not None and durable_guard is None:
            raise ValueError("durable_guard is required with a durable store")
        self._assistant = assistant
        self._assistant_guard = assistant_guard
        self._cache = cache
        self._cache_guard = cache_guard
        self._durable = durable
        self._durable_guard = durable_guard
        # conversation_id -> (deadline, session), least recently used first
        self._memory: "OrderedDict[str, Tuple[float, ConversationSession]]" = OrderedDict()
        self.cache_ttl_seconds = cache_ttl_seconds
        self.memory_ttl_seconds = memory_ttl_seconds
        self.memory_max_entries = memory_max_entries
        self._clock = clock

    @property
    def has_durable_tier(self) -> bool:
        return self._durable is not None

    # Tier helpers

    async def _cache_call(
        self, what: str, op: Callable[[], Awaitable[T]], default: T
    ) -> T:
        try:
            return await self._cache_guard.call(op, name=f"cache.{what}")
        except (DependencyError, BreakerOpenError) as exc:
            logger.warning("Session cache %s skipped: %s", what, exc)
            return default

    async def _durable_call(self, what: str, op: Callable[[], Awaitable[T]]) -> T:
        if self._durable_guard is None:
            raise RuntimeError("durable tier call without a durable guard")
        return await self._durable_guard.call(op, name=f"durable.{what}")

    def _remember(self, session: ConversationSession) -> None:
        cid = session.conversation_id
        self._memory.pop(cid, None)
        self._memory[cid] = (self._clock() + self.memory_ttl_seconds, session)
        while len(self._memory) > self.memory_max_entries:
            self._memory.popitem(last=False)

    def _recall(self, cid: str) -> Optional[ConversationSession]:
        entry = self._memory.get(cid)
        if entry is None:
            return None
        deadline, session = entry
        if self._clock() >= deadline:
            del self._memory[cid]
            return None
        self._memory.move_to_end(cid)
        return session

    async def _cache_put(self, session: ConversationSession) -> None:
        payload: Dict[str, Any] = session.model_dump(mode="json")
        key = session_key(session.conversation_id)
        await self._cache_call(
            "set",
            lambda: self._cache.set_json(key, payload, self.cache_ttl_seconds),
            None,
        )

    async def _cache_get(self, conversation_id: str) -> Optional[ConversationSession]:
        key = session_key(conversation_id)
        raw = await self._cache_call("get", lambda: self._cache.get_json(key), None)
        if raw is None:
            return None
        try:
            return ConversationSession.model_validate(raw)
        except ValueError:
            logger.warning("Dropping malformed cache entry for session %s", conversation_id)
            await self._cache_call("delete", lambda: self._cache.delete(key), None)
            return None

    async def _write(self, session: ConversationSession) -> None:
        if self._durable is not None:
            durable = self._durable
            await self._durable_call("upsert", lambda: durable.upsert_session(session))
        self._remember(session)
        await self._cache_put(session)

    # Public operations

    async def start_session(self, conversation_id: Any) -> str:
        """
        Mint a new assistant thread and store a fresh session for it.
        An existing session is replaced; the latest start wins.
        """
        cid = normalize_conversation_id(conversation_id)
        thread_id = await self._assistant_guard.call(
            self._assistant.create_thread, name="assistant.create_thread"
        )
        now = _utcnow()
        session = ConversationSession(
            conversation_id=cid,
            thread_id=thread_id,
            handoff=False,
            created_at=now,
            updated_at=now,
        )
        if self._recall(cid) is not None:
            logger.info("Replacing existing session for conversation %s", cid)
        await self._write(session)
        logger.info("Started session for conversation %s (thread=%s)", cid, thread_id)
        return thread_id

    async def get_session(self, conversation_id: Any) -> Optional[ConversationSession]:
        cid = normalize_conversation_id(conversation_id)

        session = self._recall(cid)
        if session is not None:
            return session.model_copy()

        session = await self._cache_get(cid)
        if session is not None:
            self._remember(session)
            # Sliding expiry: a hit keeps the cache entry alive.
            await self._cache_put(session)
            return session.model_copy()

        if self._durable is None:
            return None
        durable = self._durable
        session = await self._durable_call("get", lambda: durable.get_session(cid))
        if session is None:
            return None
        self._remember(session)
        await self._cache_put(session)
        logger.debug("Promoted session %s from durable tier", cid)
        return session.model_copy()

    async def has_session(self, conversation_id: Any) -> bool:
        cid = normalize_conversation_id(conversation_id)
        if self._recall(cid) is not None:
            return True
        key = session_key(cid)
        if await self._cache_call("exists", lambda: self._cache.exists(key), False):
            return True
        return await self.get_session(cid) is not None

    async def set_handoff(self, conversation_id: Any, enabled: bool) -> bool:
        """
        Update the handoff flag. Returns False, creating nothing, when the
        conversation has no session.
        """
        session = await self.get_session(conversation_id)
        if session is None:
            return False
        now = _utcnow()
        changes: Dict[str, Any] = {"handoff": bool(enabled), "updated_at": now}
        if enabled and not session.transferred_to_operator:
            changes["transferred_to_operator"] = True
            changes["operator_transfer_time"] = now
        await self._write(session.model_copy(update=changes))
        logger.info(
            "Handoff %s for conversation %s",
            "enabled" if enabled else "disabled",
            session.conversation_id,
        )
        return True

    async def list_active_sessions(self) -> List[ConversationSession]:
        if self._durable is not None:
            durable = self._durable
            return await self._durable_call("list", durable.list_sessions)

        # Without a durable tier the cache holds every live session.
        found: Dict[str, ConversationSession] = {}
        keys = await self._cache_call(
            "list", lambda: self._cache.list_keys(SESSION_KEY_PREFIX), []
        )
        for key in keys:
            session = await self._cache_get(key[len(SESSION_KEY_PREFIX):])
            if session is not None:
                found[session.conversation_id] = session
        for cid in list(self._memory):
            session = self._recall(cid)
            if session is not None and cid not in found:
                found[cid] = session
        return sorted(
            (s.model_copy() for s in found.values()),
            key=lambda s: s.updated_at,
            reverse=True,
        )

    async def delete_session(self, conversation_id: Any) -> bool:
        """Administrative removal from every tier; True if anything existed."""
        cid = normalize_conversation_id(conversation_id)
        existed = False
        if self._durable is not None:
            durable = self._durable
            existed = await self._durable_call("delete", lambda: durable.delete_session(cid))
        key = session_key(cid)
        if await self._cache_call("exists", lambda: self._cache.exists(key), False):
            existed = True
            await self._cache_call("delete", lambda: self._cache.delete(key), None)
        if self._memory.pop(cid, None) is not None:
            existed = True
        if existed:
            logger.info("Deleted session for conversation %s", cid)
        return existed

    async def evict(self, conversation_id: Any) -> None:
        """Forget a session in the fast tiers only."""
        cid = normalize_conversation_id(conversation_id)
        self._memory.pop(cid, None)
        key = session_key(cid)
        await self._cache_call("delete", lambda: self._cache.delete(key), None)

    def in_memory(self, conversation_id: Any) -> bool:
        return self._recall(normalize_conversation_id(conversation_id)) is not None


__all__ = ["SESSION_KEY_PREFIX", "SESSION_KEY_TEMPLATE", "SessionRegistry", "session_key"]
