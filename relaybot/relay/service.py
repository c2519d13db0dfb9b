"""
Inbound message handling.

`handle_inbound_message` is the single entry point for transport events.
Every event is deduplicated, then dispatched through the bounded queue
keyed by conversation, so one conversation's messages are handled in
arrival order. Dependency failures are converted into user-facing
fallback texts here; nothing raw reaches the transport layer.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence, Set, Tuple

from relaybot.assistant.base import AssistantBackend
from relaybot.dispatch import DispatchQueue
from relaybot.errors import BreakerOpenError, DependencyError
from relaybot.logging_config import logger, preview
from relaybot.resilience import CallGuard
from relaybot.schemas import (
    ConversationSession,
    InboundEvent,
    MessageLogEntry,
    MessageRole,
    RelayOutcome,
)
from relaybot.sessions import HandoffController, SessionRegistry
from relaybot.storage.message_log import MessageLog
from relaybot.transport.telegram import TelegramClient, describe_update, parse_update
from relaybot.transport.typing_indicator import TypingIndicator

from . import messages
from .commands import CommandHandler, parse_command
from .dedupe import EventDeduplicator


class RelayService:
    def __init__(
        self,
        *,
        registry: SessionRegistry,
        assistant: AssistantBackend,
        assistant_guard: CallGuard,
        transport: TelegramClient,
        transport_guard: CallGuard,
        queue: DispatchQueue,
        message_log: MessageLog,
        dedupe: Optional[EventDeduplicator] = None,
        trigger_phrase: str = "[HANDOFF]",
        transfer_message: str = "",
        contact_link: str = "",
        button_text: str = "Contact operator",
        operator_chat_id: Optional[str] = None,
        typing_interval: float = 4.0,
        history_limit: int = 10,
    ) -> None:
        self.registry = registry
        self._assistant = assistant
        self._assistant_guard = assistant_guard
        self._transport = transport
        self._transport_guard = transport_guard
        self.queue = queue
        self._message_log = message_log
        self._dedupe = dedupe
        self.operator_chat_id = str(operator_chat_id) if operator_chat_id else None
        self.typing_interval = typing_interval
        self._background: Set[asyncio.Task] = set()
        self.handoff = HandoffController(
            registry,
            message_log,
            self.send_reply,
            trigger_phrase=trigger_phrase,
            transfer_message=transfer_message,
            contact_link=contact_link,
            button_text=button_text,
        )
        self.commands = CommandHandler(
            registry=registry,
            handoff=self.handoff,
            message_log=message_log,
            notify=self.notify,
            history_limit=history_limit,
        )

    # Outbound

    async def send_reply(
        self,
        conversation_id: str,
        text: str,
        buttons: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> None:
        await self._transport_guard.call(
            lambda: self._transport.send_message(conversation_id, text, buttons=buttons),
            name="transport.send_message",
        )

    async def notify(
        self,
        conversation_id: str,
        text: str,
        buttons: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> bool:
        """`send_reply` that logs delivery failures instead of raising."""
        try:
            await self.send_reply(conversation_id, text, buttons)
        except (DependencyError, BreakerOpenError) as exc:
            logger.error("Could not deliver message to %s: %s", conversation_id, exc)
            return False
        return True

    async def _send_typing(self, conversation_id: str) -> None:
        await self._transport.send_chat_action(conversation_id, "typing")

    async def _log(self, conversation_id: str, role: MessageRole, content: str) -> None:
        try:
            await self._message_log.append_message(
                MessageLogEntry(conversation_id=conversation_id, role=role, content=content)
            )
        except (DependencyError, BreakerOpenError) as exc:
            logger.warning("Message log append for %s failed: %s", conversation_id, exc)

    # Inbound

    async def handle_inbound_message(self, event: InboundEvent) -> RelayOutcome:
        try:
            if self._dedupe is not None and await self._dedupe.check_and_mark(event.event_id):
                logger.info("Skipping duplicate event %s", event.event_id)
                return RelayOutcome.DUPLICATE
            return await self.queue.enqueue(event, self._process, key=event.conversation_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Unhandled error processing event %s for %s",
                event.event_id,
                event.conversation_id,
            )
            await self.notify(event.conversation_id, messages.GENERIC_ERROR)
            return RelayOutcome.FAILED

    async def _process(self, event: InboundEvent) -> RelayOutcome:
        chat_id = event.conversation_id
        logger.debug(
            "Inbound event %s in %s from %s (user=%s)",
            event.event_id,
            chat_id,
            event.sender_role.value,
            event.sender_username or "-",
        )
        if event.text is None:
            await self.notify(chat_id, messages.TEXT_ONLY)
            return RelayOutcome.UNSUPPORTED

        command = parse_command(event.text)
        if command is not None:
            return await self.commands.handle(event, command)

        try:
            session = await self.registry.get_session(chat_id)
        except (DependencyError, BreakerOpenError) as exc:
            logger.error("Session lookup for %s failed: %s", chat_id, exc)
            await self.notify(chat_id, messages.GENERIC_ERROR)
            return RelayOutcome.FAILED

        if session is None:
            await self.notify(chat_id, messages.NO_SESSION)
            return RelayOutcome.NO_SESSION

        if session.handoff:
            return await self._forward_to_operator(session, event.text)
        return await self._relay_to_assistant(session, event.text)

    async def _forward_to_operator(self, session: ConversationSession, text: str) -> RelayOutcome:
        chat_id = session.conversation_id
        await self._log(chat_id, MessageRole.USER, text)
        if self.operator_chat_id and self.operator_chat_id != chat_id:
            await self.notify(
                self.operator_chat_id,
                messages.OPERATOR_FORWARD.format(chat_id=chat_id, text=text),
            )
        await self.notify(chat_id, messages.FORWARDED_TO_OPERATOR)
        return RelayOutcome.FORWARDED_TO_OPERATOR

    async def _relay_to_assistant(self, session: ConversationSession, text: str) -> RelayOutcome:
        chat_id = session.conversation_id
        thread_id = session.thread_id
        logger.info("Relaying message from %s to thread %s: %s", chat_id, thread_id, preview(text))
        await self._log(chat_id, MessageRole.USER, text)

        typing = TypingIndicator(self._send_typing, chat_id, interval=self.typing_interval)
        typing.start()
        try:
            await self._assistant_guard.call(
                lambda: self._assistant.add_message(thread_id, text),
                name="assistant.add_message",
            )
            reply = await self._assistant_guard.call(
                lambda: self._assistant.run_and_await_reply(thread_id),
                name="assistant.run",
            )
        except (DependencyError, BreakerOpenError) as exc:
            logger.error("Assistant call for %s failed: %s", chat_id, exc)
            await self.notify(chat_id, messages.ASSISTANT_ERROR)
            return RelayOutcome.AI_FAILED
        finally:
            await typing.stop()

        if not reply:
            logger.warning("Empty assistant reply for %s (thread=%s)", chat_id, thread_id)
            await self.notify(chat_id, messages.EMPTY_REPLY)
            return RelayOutcome.AI_EMPTY

        try:
            visible, handoff = await self.handoff.apply_reply(chat_id, reply)
        except (DependencyError, BreakerOpenError) as exc:
            logger.error("Handoff after assistant reply for %s failed: %s", chat_id, exc)
            visible, handoff = self.handoff.strip(reply), None

        if visible:
            await self.notify(chat_id, visible)
            await self._log(chat_id, MessageRole.ASSISTANT, visible)
        elif handoff is not None and not handoff.affordance_shown:
            await self.notify(chat_id, self.handoff.transfer_message)
        return RelayOutcome.AI_HANDOFF if handoff is not None else RelayOutcome.AI_REPLIED

    # Background submission

    def submit(self, event: InboundEvent) -> asyncio.Task:
        """Handle `event` in the background; used by the webhook and poller."""
        task = asyncio.create_task(
            self.handle_inbound_message(event), name=f"relay-{event.conversation_id}"
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background relay task failed: %s", exc, exc_info=exc)

    async def accept_update(self, update: Any) -> bool:
        """
        Parse a raw transport update and schedule it. Malformed or ignored
        updates are logged and dropped.
        """
        event = parse_update(update, operator_chat_id=self.operator_chat_id)
        if event is None:
            logger.warning("Ignoring unsupported or malformed update: %s", describe_update(update))
            return False
        logger.info("Processing update: %s", describe_update(update))
        self.submit(event)
        return True

    async def drain(self) -> None:
        """Wait for all background work to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        await self.drain()
        await self.queue.close()


__all__ = ["RelayService"]
