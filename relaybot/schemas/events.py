from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

from .session import normalize_conversation_id


class SenderRole(str, Enum):
    USER = "user"
    OPERATOR = "operator"


class InboundEvent(BaseModel):
    """
    One inbound message as delivered by the transport. `text` is None for
    non-text messages (stickers, photos, ...). `event_id` is the transport's
    update id when it has one.
    """

    conversation_id: str
    text: Optional[str] = None
    sender_role: SenderRole = SenderRole.USER
    event_id: Optional[str] = None
    sender_username: Optional[str] = None

    @field_validator("conversation_id", mode="before")
    @classmethod
    def _normalize_id(cls, value):
        return normalize_conversation_id(value)

    @field_validator("event_id", mode="before")
    @classmethod
    def _event_id_str(cls, value):
        if value is None:
            return None
        return str(value)


class RelayOutcome(str, Enum):
    """What `handle_inbound_message` did with an event."""

    DUPLICATE = "duplicate"
    COMMAND = "command"
    SESSION_STARTED = "session_started"
    SESSION_START_FAILED = "session_start_failed"
    NO_SESSION = "no_session"
    UNSUPPORTED = "unsupported"
    FORWARDED_TO_OPERATOR = "forwarded_to_operator"
    AI_REPLIED = "ai_replied"
    AI_HANDOFF = "ai_handoff"
    AI_EMPTY = "ai_empty"
    AI_FAILED = "ai_failed"
    FAILED = "failed"


__all__ = ["InboundEvent", "RelayOutcome", "SenderRole"]
