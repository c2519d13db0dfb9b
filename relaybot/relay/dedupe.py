from __future__ import annotations

from typing import Optional

from relaybot.errors import BreakerOpenError, DependencyError
from relaybot.logging_config import logger
from relaybot.resilience import CallGuard
from relaybot.storage.base import KeyValueStore

EVENT_KEY_TEMPLATE = "relay:event:{event_id}"


class EventDeduplicator:
    """
    Remembers processed transport event ids for `ttl_seconds` so that a
    redelivered update is handled once. When the store is unreachable the
    event is processed rather than dropped.
    """

    def __init__(
        self, store: KeyValueStore, guard: CallGuard, *, ttl_seconds: int = 3600
    ) -> None:
        self._store = store
        self._guard = guard
        self.ttl_seconds = ttl_seconds

    async def check_and_mark(self, event_id: Optional[str]) -> bool:
        """
        True when the event was already handled; otherwise marks it. The
        check and the mark are a single store call, so concurrent deliveries
        of one event cannot both pass.
        """
        if not event_id:
            return False
        key = EVENT_KEY_TEMPLATE.format(event_id=event_id)
        try:
            stored = await self._guard.call(
                lambda: self._store.set_if_absent(key, "1", self.ttl_seconds),
                name="dedupe.mark",
            )
        except (DependencyError, BreakerOpenError) as exc:
            logger.warning("Dedupe check for event %s skipped: %s", event_id, exc)
            return False
        return not stored


__all__ = ["EVENT_KEY_TEMPLATE", "EventDeduplicator"]
