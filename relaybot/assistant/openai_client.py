"""
OpenAI Assistants API wrapper.

The official SDK client is synchronous here; every call runs on a worker
thread via anyio and SDK errors surface as AssistantBackendError.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, TypeVar

import anyio
from openai import OpenAI, OpenAIError

from relaybot.errors import AssistantBackendError
from relaybot.logging_config import logger

T = TypeVar("T")

FAILED_RUN_STATUSES = {"failed", "cancelled", "expired", "incomplete", "requires_action"}


def _create_client(api_key: str, base_url: Optional[str], timeout: float) -> OpenAI:
    kwargs: Dict[str, Any] = {"api_key": api_key, "timeout": timeout, "max_retries": 0}
    if base_url:
        kwargs["base_url"] = str(base_url)
    return OpenAI(**kwargs)


def extract_text(message: Any) -> str:
    """Concatenate the text parts of an assistant message."""
    parts = []
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) != "text":
            continue
        text = getattr(block, "text", None)
        value = getattr(text, "value", None)
        if value:
            parts.append(value)
    return "".join(parts)


class OpenAIAssistantClient:
    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        assistant_id: str,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        poll_interval_ms: int = 1000,
        client: Any = None,
    ) -> None:
        self.assistant_id = assistant_id
        self.poll_interval_ms = poll_interval_ms
        self._client = client if client is not None else _create_client(api_key, base_url, timeout)

    async def _call(self, what: str, fn: Callable[[], T]) -> T:
        try:
            return await anyio.to_thread.run_sync(fn)
        except OpenAIError as exc:
            raise AssistantBackendError(f"assistant {what} failed: {exc}") from exc

    async def validate_api_key(self) -> bool:
        try:
            await self._call("models.list", lambda: self._client.models.list())
        except AssistantBackendError as exc:
            logger.error("Assistant API key check failed: %s", exc)
            return False
        logger.info("Assistant API key is valid")
        return True

    async def retrieve_assistant(self) -> str:
        assistant = await self._call(
            "assistants.retrieve",
            lambda: self._client.beta.assistants.retrieve(self.assistant_id),
        )
        logger.info("Connected to assistant %s", assistant.id)
        return assistant.id

    async def ping(self) -> bool:
        await self.retrieve_assistant()
        return True

    async def create_thread(self) -> str:
        thread = await self._call("threads.create", lambda: self._client.beta.threads.create())
        logger.info("Created assistant thread %s", thread.id)
        return thread.id

    async def add_message(self, thread_id: str, text: str) -> None:
        message = await self._call(
            "messages.create",
            lambda: self._client.beta.threads.messages.create(
                thread_id, role="user", content=text
            ),
        )
        logger.debug("Added message %s to thread %s", getattr(message, "id", "?"), thread_id)

    async def run_and_await_reply(self, thread_id: str) -> Optional[str]:
        run = await self._call(
            "runs.create_and_poll",
            lambda: self._client.beta.threads.runs.create_and_poll(
                thread_id=thread_id,
                assistant_id=self.assistant_id,
                poll_interval_ms=self.poll_interval_ms,
            ),
        )
        status = getattr(run, "status", None)
        logger.info("Assistant run on thread %s finished with status %s", thread_id, status)
        if status in FAILED_RUN_STATUSES:
            detail = getattr(run, "last_error", None)
            raise AssistantBackendError(f"assistant run ended with status {status}: {detail}")

        page = await self._call(
            "messages.list",
            lambda: self._client.beta.threads.messages.list(
                thread_id=thread_id, order="desc", limit=1
            ),
        )
        messages = list(getattr(page, "data", None) or [])
        if not messages or getattr(messages[0], "role", None) != "assistant":
            logger.warning("No assistant reply found on thread %s", thread_id)
            return None
        reply = extract_text(messages[0])
        return reply or None


__all__ = ["OpenAIAssistantClient", "extract_text"]
