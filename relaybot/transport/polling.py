from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from relaybot.background import wait_or_stop
from relaybot.errors import TransportError
from relaybot.logging_config import logger

from .telegram import TelegramClient

UpdateHandler = Callable[[Any], Awaitable[None]]

MAX_BACKOFF_SECONDS = 30.0


class UpdatePoller:
    """Long-polls getUpdates and hands every update to `handler`."""

    def __init__(
        self,
        client: TelegramClient,
        handler: UpdateHandler,
        *,
        timeout: int = 30,
    ) -> None:
        self._client = client
        self._handler = handler
        self.timeout = timeout
        self._offset: Optional[int] = None
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> int:
        updates = await self._client.get_updates(offset=self._offset, timeout=self.timeout)
        for update in updates:
            update_id = update.get("update_id") if isinstance(update, dict) else None
            if isinstance(update_id, int):
                self._offset = update_id + 1
            try:
                await self._handler(update)
            except Exception:
                logger.exception("Update handler failed for update %s", update_id)
        return len(updates)

    async def run(self) -> None:
        # Polling and a registered webhook are mutually exclusive.
        try:
            await self._client.delete_webhook()
        except TransportError as exc:
            logger.warning("Could not delete webhook before polling: %s", exc)

        logger.info("Update poller started (timeout=%ss)", self.timeout)
        backoff = 1.0
        while not self._stop.is_set():
            try:
                await self.poll_once()
                backoff = 1.0
            except TransportError as exc:
                logger.warning("Polling failed, retrying in %.0fs: %s", backoff, exc)
                if await wait_or_stop(self._stop, backoff):
                    break
                backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)
        logger.info("Update poller stopped")

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="update-poller")

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            # A long-poll request can take `timeout` seconds to return.
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


__all__ = ["UpdatePoller"]
