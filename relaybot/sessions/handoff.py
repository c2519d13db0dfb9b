"""
Per-conversation handoff state machine.

AI_CONTROLLED -> HUMAN_CONTROLLED on an operator command or when an
assistant reply contains the trigger marker. The way back is an operator
command only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple

from relaybot.logging_config import logger
from relaybot.schemas import ConversationSession, MessageLogEntry, MessageRole
from relaybot.storage.message_log import MessageLog

from .registry import SessionRegistry

TRANSFER_AUDIT_TEXT = "User transferred to operator"

# (conversation_id, text, url buttons as (label, url))
SendReply = Callable[[str, str, Optional[Sequence[Tuple[str, str]]]], Awaitable[Any]]


class HandoffState(str, Enum):
    AI_CONTROLLED = "ai_controlled"
    HUMAN_CONTROLLED = "human_controlled"


class HandoffStatus(str, Enum):
    TRANSITIONED = "transitioned"
    UNCHANGED = "unchanged"
    NO_SESSION = "no_session"


@dataclass
class HandoffResult:
    status: HandoffStatus
    affordance_shown: bool = False

    @property
    def ok(self) -> bool:
        return self.status is not HandoffStatus.NO_SESSION


def state_of(session: ConversationSession) -> HandoffState:
    return HandoffState.HUMAN_CONTROLLED if session.handoff else HandoffState.AI_CONTROLLED


def contains_trigger(text: Optional[str], marker: str) -> bool:
    return bool(text) and bool(marker) and marker in text


def strip_trigger(text: str, marker: str) -> str:
    return text.replace(marker, "").strip()


class HandoffController:
    def __init__(
        self,
        registry: SessionRegistry,
        message_log: MessageLog,
        send_reply: SendReply,
        *,
        trigger_phrase: str,
        transfer_message: str,
        contact_link: str,
        button_text: str,
    ) -> None:
        self._registry = registry
        self._message_log = message_log
        self._send_reply = send_reply
        self.trigger_phrase = trigger_phrase
        self.transfer_message = transfer_message
        self.contact_link = contact_link
        self.button_text = button_text

    async def enable(self, conversation_id: Any, *, source: str = "operator") -> HandoffResult:
        session = await self._registry.get_session(conversation_id)
        if session is None:
            return HandoffResult(HandoffStatus.NO_SESSION)
        if state_of(session) is HandoffState.HUMAN_CONTROLLED:
            return HandoffResult(HandoffStatus.UNCHANGED)

        first_transfer = not session.transferred_to_operator
        if not await self._registry.set_handoff(session.conversation_id, True):
            # Deleted between the read and the write.
            return HandoffResult(HandoffStatus.NO_SESSION)
        logger.info(
            "Conversation %s handed to a human operator (source=%s)",
            session.conversation_id,
            source,
        )
        await self._audit(session.conversation_id)

        shown = False
        if first_transfer:
            shown = await self._show_contact(session.conversation_id)
        return HandoffResult(HandoffStatus.TRANSITIONED, affordance_shown=shown)

    async def disable(self, conversation_id: Any) -> HandoffResult:
        session = await self._registry.get_session(conversation_id)
        if session is None:
            return HandoffResult(HandoffStatus.NO_SESSION)
        if state_of(session) is HandoffState.AI_CONTROLLED:
            return HandoffResult(HandoffStatus.UNCHANGED)
        if not await self._registry.set_handoff(session.conversation_id, False):
            return HandoffResult(HandoffStatus.NO_SESSION)
        return HandoffResult(HandoffStatus.TRANSITIONED)

    async def apply_reply(
        self, conversation_id: Any, reply: str
    ) -> Tuple[Optional[str], Optional[HandoffResult]]:
        """
        Inspect an assistant reply for the trigger marker.

        Returns the text to show the user (None when only the marker was
        present) and the handoff result when the marker fired.
        """
        if not contains_trigger(reply, self.trigger_phrase):
            return reply, None
        visible = strip_trigger(reply, self.trigger_phrase) or None
        result = await self.enable(conversation_id, source="assistant")
        return visible, result

    def strip(self, reply: str) -> Optional[str]:
        """Text of `reply` as shown to the user, without the trigger marker."""
        if not contains_trigger(reply, self.trigger_phrase):
            return reply
        return strip_trigger(reply, self.trigger_phrase) or None

    async def _audit(self, conversation_id: str) -> None:
        entry = MessageLogEntry(
            conversation_id=conversation_id,
            role=MessageRole.SYSTEM,
            content=TRANSFER_AUDIT_TEXT,
        )
        try:
            await self._message_log.append_message(entry)
        except Exception:
            logger.exception("Failed to record transfer audit entry for %s", conversation_id)

    async def _show_contact(self, conversation_id: str) -> bool:
        try:
            await self._send_reply(
                conversation_id,
                self.transfer_message,
                [(self.button_text, self.contact_link)],
            )
        except Exception:
            logger.exception("Failed to show operator contact to %s", conversation_id)
            return False
        return True


__all__ = [
    "HandoffController",
    "HandoffResult",
    "HandoffState",
    "HandoffStatus",
    "TRANSFER_AUDIT_TEXT",
    "contains_trigger",
    "state_of",
    "strip_trigger",
]
