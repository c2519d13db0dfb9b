from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped

from .base import Base, IntegerPrimaryKeyMixin, utcnow


class BotInstance(IntegerPrimaryKeyMixin, Base):
    """Liveness row for one running relay process."""

    __tablename__ = "bot_instances"
    __table_args__ = (
        UniqueConstraint("instance_id", name="uq_bot_instances_instance_id"),
    )

    instance_id: Mapped[str] = Column(String(64), nullable=False)
    hostname: Mapped[str] = Column(String(255), nullable=False, index=True)
    started_at: Mapped[dt.datetime] = Column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_heartbeat: Mapped[dt.datetime] = Column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


__all__ = ["BotInstance"]
