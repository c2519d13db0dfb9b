from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def normalize_conversation_id(value: Any) -> str:
    """Transport ids are integers, operator commands carry strings; both map to one key."""
    if isinstance(value, bool):
        raise ValueError("conversation id must be a string or integer")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValueError("conversation id must be a non-empty string or integer")


class ConversationSession(BaseModel):
    """
    Mapping of one conversation to its assistant thread and handoff flag.
    """

    conversation_id: str
    thread_id: str
    handoff: bool = False
    created_at: dt.datetime = Field(default_factory=_now)
    updated_at: dt.datetime = Field(default_factory=_now)
    transferred_to_operator: bool = False
    operator_transfer_time: Optional[dt.datetime] = None

    @field_validator("conversation_id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        return normalize_conversation_id(value)

    @field_validator("created_at", "updated_at", "operator_transfer_time")
    @classmethod
    def _aware(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        # SQLite hands back naive datetimes; everything is stored as UTC.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value


__all__ = ["ConversationSession", "normalize_conversation_id"]
