from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from relaybot.background import wait_or_stop
from relaybot.logging_config import logger
from relaybot.resilience import retry


class TypingIndicator:
    """
    Re-sends the "typing" chat action every `interval` seconds while a slow
    assistant call is running. Stopping is cooperative: the loop checks the
    stop flag between sends and never interrupts one in progress.
    """

    def __init__(
        self,
        send_action: Callable[[str], Awaitable[None]],
        conversation_id: str,
        *,
        interval: float = 4.0,
        attempts: int = 2,
    ) -> None:
        self._send_action = send_action
        self.conversation_id = conversation_id
        self.interval = interval
        self.attempts = attempts
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.sent = 0

    async def _send_once(self) -> None:
        try:
            await retry(
                lambda: self._send_action(self.conversation_id),
                max_attempts=self.attempts,
                base_delay=0.2,
                name="typing indicator",
            )
            self.sent += 1
        except Exception as exc:
            if not self._stop.is_set():
                logger.warning("Typing indicator for %s failed: %s", self.conversation_id, exc)

    async def _loop(self) -> None:
        while not self._stop.is_set():
            await self._send_once()
            if await wait_or_stop(self._stop, self.interval):
                break

    def start(self) -> "TypingIndicator":
        if self._task is None:
            self._task = asyncio.create_task(
                self._loop(), name=f"typing-{self.conversation_id}"
            )
        return self

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def __aenter__(self) -> "TypingIndicator":
        return self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()


__all__ = ["TypingIndicator"]
