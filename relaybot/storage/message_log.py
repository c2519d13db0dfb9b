from __future__ import annotations

from collections import defaultdict, deque
from typing import Deque, Dict, List, Protocol

from relaybot.schemas import MessageLogEntry


class MessageLog(Protocol):
    async def append_message(self, entry: MessageLogEntry) -> None: ...

    async def recent_messages(self, conversation_id: str, limit: int = 10) -> List[MessageLogEntry]: ...


class InMemoryMessageLog:
    """Bounded per-conversation log used when no durable store is configured."""

    def __init__(self, max_entries_per_conversation: int = 200) -> None:
        self._max = max_entries_per_conversation
        self._entries: Dict[str, Deque[MessageLogEntry]] = defaultdict(
            lambda: deque(maxlen=self._max)
        )

    async def append_message(self, entry: MessageLogEntry) -> None:
        self._entries[entry.conversation_id].append(entry)

    async def recent_messages(self, conversation_id: str, limit: int = 10) -> List[MessageLogEntry]:
        entries = self._entries.get(conversation_id)
        if not entries or limit <= 0:
            return []
        return list(entries)[-limit:]


class GuardedMessageLog:
    """Routes message log calls through the durable tier's call guard."""

    def __init__(self, inner: MessageLog, guard) -> None:
        self._inner = inner
        self._guard = guard

    async def append_message(self, entry: MessageLogEntry) -> None:
        await self._guard.call(
            lambda: self._inner.append_message(entry), name="message_log.append"
        )

    async def recent_messages(self, conversation_id: str, limit: int = 10) -> List[MessageLogEntry]:
        return await self._guard.call(
            lambda: self._inner.recent_messages(conversation_id, limit),
            name="message_log.recent",
        )


__all__ = ["GuardedMessageLog", "InMemoryMessageLog", "MessageLog"]
