from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from relaybot.logging_config import logger

T = TypeVar("T")


async def retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation` up to `max_attempts` times, waiting
    `base_delay * attempt` seconds after the n-th failure.

    The last error is re-raised once attempts are exhausted. Exceptions
    outside `retry_on` propagate immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "%s failed after %d attempt(s): %s", name, attempt, exc
                )
                raise
            delay = base_delay * attempt
            logger.info(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                name,
                attempt,
                max_attempts,
                delay,
                exc,
            )
            if delay > 0:
                await sleep(delay)
            attempt += 1


__all__ = ["retry"]
