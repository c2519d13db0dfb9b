"""
Telegram Bot API transport over httpx.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from relaybot.errors import TransportError
from relaybot.logging_config import logger, preview
from relaybot.schemas import InboundEvent, SenderRole

# Telegram rejects messages longer than this.
MAX_MESSAGE_LENGTH = 4096


def build_url_keyboard(buttons: Sequence[Tuple[str, str]]) -> Dict[str, Any]:
    return {"inline_keyboard": [[{"text": label, "url": url}] for label, url in buttons]}


def parse_update(
    update: Any, *, operator_chat_id: Optional[str] = None
) -> Optional[InboundEvent]:
    """
    Turn a raw update into an InboundEvent.

    Returns None for payloads that are not updates (no integer update_id) and
    for update kinds the relay ignores (callbacks, channel posts, edits).
    """
    if not isinstance(update, dict):
        return None
    update_id = update.get("update_id")
    if not isinstance(update_id, int) or isinstance(update_id, bool):
        return None
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat")
    if not isinstance(chat, dict) or chat.get("id") is None:
        return None

    chat_id = str(chat["id"])
    text = message.get("text")
    sender = message.get("from") or {}
    role = SenderRole.USER
    if operator_chat_id is not None and chat_id == str(operator_chat_id):
        role = SenderRole.OPERATOR
    return InboundEvent(
        conversation_id=chat_id,
        text=text if isinstance(text, str) else None,
        sender_role=role,
        event_id=str(update_id),
        sender_username=sender.get("username") if isinstance(sender, dict) else None,
    )


def describe_update(update: Any) -> Dict[str, Any]:
    """Compact summary of an update for log lines."""
    if not isinstance(update, dict):
        return {"type": type(update).__name__}
    kind = "other"
    for candidate in ("message", "callback_query", "edited_message", "channel_post"):
        if candidate in update:
            kind = candidate
            break
    message = update.get("message") or update.get("edited_message") or {}
    return {
        "update_id": update.get("update_id"),
        "type": kind,
        "chat_id": (message.get("chat") or {}).get("id") if isinstance(message, dict) else None,
        "text": preview(message.get("text"), 50) if isinstance(message, dict) else "",
    }


class TelegramClient:
    name = "telegram"

    def __init__(
        self,
        token: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = f"{api_base.rstrip('/')}/bot{token}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def _request(
        self, method: str, payload: Optional[Dict[str, Any]] = None, *, timeout: float | None = None
    ) -> Any:
        url = f"{self._base_url}/{method}"
        kwargs: Dict[str, Any] = {"json": payload or {}}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(
                f"{method} returned non-JSON response (status={response.status_code})"
            ) from exc
        if not isinstance(body, dict):
            raise TransportError(f"{method} returned an unexpected payload")
        if response.status_code >= 400 or not body.get("ok", False):
            description = body.get("description")
            raise TransportError(
                f"{method} rejected (status={response.status_code}): {description}"
            )
        return body.get("result")

    async def get_me(self) -> Dict[str, Any]:
        return await self._request("getMe")

    async def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        buttons: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> Dict[str, Any]:
        if len(text) > MAX_MESSAGE_LENGTH:
            logger.warning(
                "Truncating outgoing message to %s (%d chars)", chat_id, len(text)
            )
            text = text[:MAX_MESSAGE_LENGTH]
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if buttons:
            payload["reply_markup"] = build_url_keyboard(buttons)
        return await self._request("sendMessage", payload)

    async def send_chat_action(self, chat_id: str, action: str = "typing") -> None:
        await self._request("sendChatAction", {"chat_id": chat_id, "action": action})

    async def get_updates(self, *, offset: Optional[int] = None, timeout: int = 30) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        # Leave headroom over the long-poll window.
        result = await self._request("getUpdates", payload, timeout=timeout + 10)
        return list(result or [])

    async def set_webhook(self, url: str) -> bool:
        return bool(await self._request("setWebhook", {"url": url}))

    async def delete_webhook(self, *, drop_pending_updates: bool = False) -> bool:
        return bool(
            await self._request(
                "deleteWebhook", {"drop_pending_updates": drop_pending_updates}
            )
        )

    async def ping(self) -> bool:
        await self.get_me()
        return True

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "MAX_MESSAGE_LENGTH",
    "TelegramClient",
    "build_url_keyboard",
    "describe_update",
    "parse_update",
]
