from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .breaker import CircuitBreaker
from .retry import retry

T = TypeVar("T")


class CallGuard:
    """
    Per-dependency wrapper: the retry loop runs inside the breaker, so an
    exhausted retry sequence counts as one breaker failure and an open
    breaker is never retried.
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.breaker = breaker
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retry_on = retry_on
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.breaker.name

    async def call(self, operation: Callable[[], Awaitable[T]], *, name: str | None = None) -> T:
        async def _with_retry() -> T:
            return await retry(
                operation,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                retry_on=self.retry_on,
                name=name or self.breaker.name,
                sleep=self._sleep,
            )

        return await self.breaker.call(_with_retry)


__all__ = ["CallGuard"]
