from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .session import normalize_conversation_id


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageLogEntry(BaseModel):
    conversation_id: str
    role: MessageRole
    content: str
    created_at: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )

    @field_validator("conversation_id", mode="before")
    @classmethod
    def _normalize_id(cls, value):
        return normalize_conversation_id(value)

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: dt.datetime) -> dt.datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value


__all__ = ["MessageLogEntry", "MessageRole"]
