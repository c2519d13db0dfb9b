"""
Bounded dispatch of inbound messages.

At most `concurrency` items run at once. Items are admitted in FIFO order;
an item whose key (the conversation id) already has an item in flight is
skipped until that one finishes, so messages from one conversation are
processed strictly in arrival order while other conversations keep moving.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Hashable, Optional, Set

from relaybot.logging_config import logger

ProcessFn = Callable[[Any], Awaitable[Any]]


@dataclass
class _QueueItem:
    seq: int
    message: Any
    process_fn: ProcessFn
    key: Optional[Hashable]
    future: asyncio.Future = field(repr=False)


class QueueClosedError(RuntimeError):
    pass


class DispatchQueue:
    def __init__(self, concurrency: int = 5) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self._pending: Deque[_QueueItem] = deque()
        self._active_keys: Set[Hashable] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._seq = itertools.count(1)
        self._closed = False
        self._completed = 0
        self._failed = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def stats(self) -> Dict[str, int]:
        return {
            "concurrency": self.concurrency,
            "in_flight": self.in_flight,
            "pending": self.pending,
            "completed": self._completed,
            "failed": self._failed,
        }

    def enqueue(
        self,
        message: Any,
        process_fn: ProcessFn,
        *,
        key: Optional[Hashable] = None,
    ) -> asyncio.Future:
        """
        Admit `message`; the returned future resolves with `process_fn`'s
        result or rejects with its exception. Items sharing a `key` never run
        concurrently.
        """
        if self._closed:
            raise QueueClosedError("dispatch queue is closed")
        loop = asyncio.get_running_loop()
        item = _QueueItem(
            seq=next(self._seq),
            message=message,
            process_fn=process_fn,
            key=key,
            future=loop.create_future(),
        )
        self._pending.append(item)
        self._idle.clear()
        self._pump()
        return item.future

    def _pump(self) -> None:
        if not self._pending or len(self._tasks) >= self.concurrency:
            return
        waiting: Deque[_QueueItem] = deque()
        while self._pending and len(self._tasks) < self.concurrency:
            item = self._pending.popleft()
            if item.future.cancelled():
                continue
            if item.key is not None and item.key in self._active_keys:
                waiting.append(item)
                continue
            self._start(item)
        # Skipped items keep their place ahead of anything not yet scanned.
        waiting.extend(self._pending)
        self._pending = waiting
        if not self._pending and not self._tasks:
            self._idle.set()

    def _start(self, item: _QueueItem) -> None:
        if item.key is not None:
            self._active_keys.add(item.key)
        task = asyncio.create_task(self._run(item), name=f"dispatch-{item.seq}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, item: _QueueItem) -> None:
        try:
            result = await item.process_fn(item.message)
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as exc:
            self._failed += 1
            logger.debug("Dispatch item %s (key=%s) failed: %s", item.seq, item.key, exc)
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            self._completed += 1
            if not item.future.done():
                item.future.set_result(result)
        finally:
            if item.key is not None:
                self._active_keys.discard(item.key)
            current = asyncio.current_task()
            self._tasks.discard(current)
            self._pump()
            if not self._pending and not self._tasks:
                self._idle.set()

    async def join(self) -> None:
        """Wait until nothing is pending or in flight."""
        await self._idle.wait()

    async def close(self, *, cancel_pending: bool = True) -> None:
        """
        Stop accepting work. Pending items are cancelled (or drained when
        `cancel_pending` is False) and in-flight items are awaited.
        """
        self._closed = True
        if cancel_pending:
            while self._pending:
                item = self._pending.popleft()
                if not item.future.done():
                    item.future.cancel()
        else:
            await self.join()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._idle.set()


__all__ = ["DispatchQueue", "QueueClosedError"]
