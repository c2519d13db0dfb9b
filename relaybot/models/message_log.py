from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped

from .base import Base, IntegerPrimaryKeyMixin, utcnow


class MessageLogRecord(IntegerPrimaryKeyMixin, Base):
    """Append-only log of user, assistant and operator/system messages."""

    __tablename__ = "message_logs"
    __table_args__ = (
        Index("ix_message_logs_conversation_created", "conversation_id", "created_at"),
    )

    conversation_id: Mapped[str] = Column(String(64), nullable=False)
    role: Mapped[str] = Column(String(16), nullable=False)
    content: Mapped[str] = Column(Text, nullable=False)
    created_at: Mapped[dt.datetime] = Column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


__all__ = ["MessageLogRecord"]
