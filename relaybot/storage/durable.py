"""
SQLAlchemy-backed durable tier: sessions, the message log and the
bot instance registry.

The ORM work is synchronous; every public method runs it on a worker
thread via anyio so the event loop never blocks on the database.
"""

from __future__ import annotations

import datetime as dt
from typing import Callable, List, Optional, TypeVar

import anyio
from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from relaybot.errors import DurableStoreError
from relaybot.logging_config import logger
from relaybot.models import BotInstance, ConversationRecord, MessageLogRecord, utcnow
from relaybot.schemas import ConversationSession, MessageLogEntry, MessageRole

T = TypeVar("T")


def _to_session(row: ConversationRecord) -> ConversationSession:
    return ConversationSession(
        conversation_id=row.conversation_id,
        thread_id=row.thread_id,
        handoff=bool(row.human_handoff),
        created_at=row.created_at,
        updated_at=row.updated_at,
        transferred_to_operator=bool(row.transferred_to_operator),
        operator_transfer_time=row.operator_transfer_time,
    )


def _to_entry(row: MessageLogRecord) -> MessageLogEntry:
    return MessageLogEntry(
        conversation_id=row.conversation_id,
        role=MessageRole(row.role),
        content=row.content,
        created_at=row.created_at,
    )


class DurableStore:
    name = "sql"

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    async def _run(self, op_name: str, fn: Callable[[Session], T]) -> T:
        def _call() -> T:
            with self._session_factory() as db:
                try:
                    result = fn(db)
                    db.commit()
                    return result
                except Exception:
                    db.rollback()
                    raise

        try:
            return await anyio.to_thread.run_sync(_call)
        except SQLAlchemyError as exc:
            logger.warning("Durable store %s failed: %s", op_name, exc)
            raise DurableStoreError(f"{op_name} failed: {exc}") from exc

    # Sessions

    async def upsert_session(self, session: ConversationSession) -> None:
        def _op(db: Session) -> None:
            row = db.execute(
                select(ConversationRecord).where(
                    ConversationRecord.conversation_id == session.conversation_id
                )
            ).scalar_one_or_none()
            if row is None:
                row = ConversationRecord(conversation_id=session.conversation_id)
                db.add(row)
            row.thread_id = session.thread_id
            row.human_handoff = session.handoff
            row.transferred_to_operator = session.transferred_to_operator
            row.operator_transfer_time = session.operator_transfer_time
            row.created_at = session.created_at
            row.updated_at = session.updated_at

        await self._run("upsert_session", _op)

    async def get_session(self, conversation_id: str) -> Optional[ConversationSession]:
        def _op(db: Session) -> Optional[ConversationSession]:
            row = db.execute(
                select(ConversationRecord).where(
                    ConversationRecord.conversation_id == conversation_id
                )
            ).scalar_one_or_none()
            return _to_session(row) if row is not None else None

        return await self._run("get_session", _op)

    async def list_sessions(self) -> List[ConversationSession]:
        def _op(db: Session) -> List[ConversationSession]:
            rows = db.execute(
                select(ConversationRecord).order_by(ConversationRecord.updated_at.desc())
            ).scalars()
            return [_to_session(row) for row in rows]

        return await self._run("list_sessions", _op)

    async def delete_session(self, conversation_id: str) -> bool:
        def _op(db: Session) -> bool:
            result = db.execute(
                delete(ConversationRecord).where(
                    ConversationRecord.conversation_id == conversation_id
                )
            )
            return (result.rowcount or 0) > 0

        return await self._run("delete_session", _op)

    # Message log

    async def append_message(self, entry: MessageLogEntry) -> None:
        def _op(db: Session) -> None:
            db.add(
                MessageLogRecord(
                    conversation_id=entry.conversation_id,
                    role=entry.role.value,
                    content=entry.content,
                    created_at=entry.created_at,
                )
            )

        await self._run("append_message", _op)

    async def recent_messages(self, conversation_id: str, limit: int = 10) -> List[MessageLogEntry]:
        """Newest `limit` entries, returned oldest first."""

        def _op(db: Session) -> List[MessageLogEntry]:
            rows = db.execute(
                select(MessageLogRecord)
                .where(MessageLogRecord.conversation_id == conversation_id)
                .order_by(MessageLogRecord.created_at.desc(), MessageLogRecord.id.desc())
                .limit(limit)
            ).scalars()
            return [_to_entry(row) for row in reversed(list(rows))]

        return await self._run("recent_messages", _op)

    # Instance registry

    async def register_instance(self, instance_id: str, hostname: str) -> None:
        def _op(db: Session) -> None:
            now = utcnow()
            db.add(
                BotInstance(
                    instance_id=instance_id,
                    hostname=hostname,
                    started_at=now,
                    last_heartbeat=now,
                )
            )

        await self._run("register_instance", _op)

    async def heartbeat(self, instance_id: str) -> bool:
        def _op(db: Session) -> bool:
            row = db.execute(
                select(BotInstance).where(BotInstance.instance_id == instance_id)
            ).scalar_one_or_none()
            if row is None:
                return False
            row.last_heartbeat = utcnow()
            return True

        return await self._run("heartbeat", _op)

    async def unregister_instance(self, instance_id: str) -> None:
        await self._run(
            "unregister_instance",
            lambda db: db.execute(
                delete(BotInstance).where(BotInstance.instance_id == instance_id)
            ),
        )

    async def delete_instances_for_host(self, hostname: str) -> int:
        def _op(db: Session) -> int:
            result = db.execute(delete(BotInstance).where(BotInstance.hostname == hostname))
            return result.rowcount or 0

        return await self._run("delete_instances_for_host", _op)

    async def purge_stale_instances(self, cutoff: dt.datetime) -> int:
        def _op(db: Session) -> int:
            result = db.execute(delete(BotInstance).where(BotInstance.last_heartbeat < cutoff))
            return result.rowcount or 0

        return await self._run("purge_stale_instances", _op)

    async def list_instances(self) -> List[str]:
        def _op(db: Session) -> List[str]:
            return list(db.execute(select(BotInstance.instance_id)).scalars())

        return await self._run("list_instances", _op)

    async def ping(self) -> bool:
        await self._run("ping", lambda db: db.execute(text("SELECT 1")))
        return True


__all__ = ["DurableStore"]
