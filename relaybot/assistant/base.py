from __future__ import annotations

from typing import Optional, Protocol


class AssistantBackend(Protocol):
    """Hosted assistant that keeps per-conversation context in threads."""

    async def create_thread(self) -> str: ...

    async def add_message(self, thread_id: str, text: str) -> None: ...

    async def run_and_await_reply(self, thread_id: str) -> Optional[str]:
        """Run the assistant on the thread; None when it produced no reply."""
        ...

    async def ping(self) -> bool: ...


__all__ = ["AssistantBackend"]
