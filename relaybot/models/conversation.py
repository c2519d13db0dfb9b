from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, Column, DateTime, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped

from .base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class ConversationRecord(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Durable row for one conversation's assistant thread and handoff flag."""

    __tablename__ = "sessions"
    __table_args__ = (
        UniqueConstraint("conversation_id", name="uq_sessions_conversation_id"),
    )

    conversation_id: Mapped[str] = Column(String(64), nullable=False)
    thread_id: Mapped[str] = Column(String(128), nullable=False)
    human_handoff: Mapped[bool] = Column(
        Boolean, nullable=False, server_default=text("FALSE"), default=False
    )
    transferred_to_operator: Mapped[bool] = Column(
        Boolean, nullable=False, server_default=text("FALSE"), default=False
    )
    operator_transfer_time: Mapped[dt.datetime | None] = Column(
        DateTime(timezone=True), nullable=True
    )


__all__ = ["ConversationRecord"]
