"""
Operator and session commands delivered as plain text through the inbound
channel (/start, /handoff, /ai, /answer, /users, /history).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from relaybot.errors import BreakerOpenError, DependencyError
from relaybot.logging_config import logger
from relaybot.schemas import InboundEvent, MessageLogEntry, MessageRole, RelayOutcome
from relaybot.sessions import HandoffController, HandoffStatus, SessionRegistry
from relaybot.storage.message_log import MessageLog

from . import messages

COMMAND_PATTERN = re.compile(
    r"^/(?P<name>[A-Za-z_]+)(?:@[A-Za-z0-9_]+)?(?:\s+(?P<args>.*))?$", re.DOTALL
)

KNOWN_COMMANDS = {"start", "handoff", "ai", "answer", "users", "history"}

USAGE = {
    "handoff": "/handoff [chatId]",
    "ai": "/ai [chatId]",
    "answer": "/answer [chatId] [message]",
    "history": "/history [chatId]",
}


@dataclass
class ParsedCommand:
    name: str
    args: str = ""


def parse_command(text: Optional[str]) -> Optional[ParsedCommand]:
    if not text:
        return None
    match = COMMAND_PATTERN.match(text.strip())
    if match is None:
        return None
    return ParsedCommand(
        name=match.group("name").lower(), args=(match.group("args") or "").strip()
    )


class CommandHandler:
    def __init__(
        self,
        *,
        registry: SessionRegistry,
        handoff: HandoffController,
        message_log: MessageLog,
        notify: Callable[..., Awaitable[bool]],
        history_limit: int = 10,
    ) -> None:
        self._registry = registry
        self._handoff = handoff
        self._message_log = message_log
        self._notify = notify
        self.history_limit = history_limit

    async def handle(self, event: InboundEvent, command: ParsedCommand) -> RelayOutcome:
        chat_id = event.conversation_id
        if command.name not in KNOWN_COMMANDS:
            logger.info("Ignoring unknown command /%s from %s", command.name, chat_id)
            return RelayOutcome.COMMAND

        logger.info(
            "Command /%s from %s (%s, user=%s)",
            command.name,
            chat_id,
            event.sender_role.value,
            event.sender_username or "-",
        )
        if command.name == "start":
            return await self.start(chat_id)

        try:
            await getattr(self, f"cmd_{command.name}")(chat_id, command.args)
        except BreakerOpenError as exc:
            logger.warning("/%s rejected, %s", command.name, exc)
            await self._notify(chat_id, messages.TEMPORARILY_UNAVAILABLE)
        except DependencyError as exc:
            logger.warning("/%s failed: %s", command.name, exc)
            await self._notify(chat_id, messages.GENERIC_ERROR)
        return RelayOutcome.COMMAND

    async def start(self, chat_id: str) -> RelayOutcome:
        try:
            await self._registry.start_session(chat_id)
        except (DependencyError, BreakerOpenError) as exc:
            logger.error("Failed to start session for %s: %s", chat_id, exc)
            await self._notify(chat_id, messages.START_FAILED)
            return RelayOutcome.SESSION_START_FAILED
        await self._notify(chat_id, messages.WELCOME)
        return RelayOutcome.SESSION_STARTED

    async def _usage(self, operator_id: str, name: str) -> None:
        await self._notify(operator_id, messages.COMMAND_USAGE.format(usage=USAGE[name]))

    async def cmd_handoff(self, operator_id: str, args: str) -> None:
        target = args.split()[0] if args else ""
        if not target:
            await self._usage(operator_id, "handoff")
            return
        result = await self._handoff.enable(target, source="operator")
        if result.status is HandoffStatus.NO_SESSION:
            await self._notify(operator_id, messages.CHAT_NOT_FOUND.format(chat_id=target))
        elif result.status is HandoffStatus.UNCHANGED:
            await self._notify(operator_id, messages.HANDOFF_ALREADY.format(chat_id=target))
        else:
            await self._notify(operator_id, messages.HANDOFF_ENABLED.format(chat_id=target))
            if not result.affordance_shown:
                await self._notify(target, messages.CONNECTED_TO_OPERATOR)

    async def cmd_ai(self, operator_id: str, args: str) -> None:
        target = args.split()[0] if args else ""
        if not target:
            await self._usage(operator_id, "ai")
            return
        result = await self._handoff.disable(target)
        if result.status is HandoffStatus.NO_SESSION:
            await self._notify(operator_id, messages.CHAT_NOT_FOUND.format(chat_id=target))
        elif result.status is HandoffStatus.UNCHANGED:
            await self._notify(operator_id, messages.AI_ALREADY.format(chat_id=target))
        else:
            await self._notify(operator_id, messages.AI_REACTIVATED.format(chat_id=target))
            await self._notify(target, messages.CONNECTED_TO_AI)

    async def cmd_answer(self, operator_id: str, args: str) -> None:
        parts = args.split(maxsplit=1)
        if len(parts) < 2:
            await self._usage(operator_id, "answer")
            return
        target, text = parts
        session = await self._registry.get_session(target)
        if session is None or not session.handoff:
            await self._notify(operator_id, messages.ANSWER_REJECTED.format(chat_id=target))
            return
        if not await self._notify(target, text):
            await self._notify(operator_id, messages.ANSWER_FAILED.format(chat_id=target))
            return
        try:
            await self._message_log.append_message(
                MessageLogEntry(
                    conversation_id=session.conversation_id,
                    role=MessageRole.SYSTEM,
                    content=text,
                )
            )
        except (DependencyError, BreakerOpenError) as exc:
            logger.warning("Operator answer to %s not logged: %s", target, exc)
        await self._notify(operator_id, messages.ANSWER_SENT.format(chat_id=target))

    async def cmd_users(self, operator_id: str, args: str) -> None:
        sessions = await self._registry.list_active_sessions()
        if not sessions:
            await self._notify(operator_id, messages.NO_ACTIVE_USERS)
            return
        lines = [messages.ACTIVE_USERS_HEADER]
        for session in sessions:
            status = messages.STATUS_HANDOFF if session.handoff else messages.STATUS_AI
            lines.append(f"- {session.conversation_id} ({status})")
        lines.append("")
        lines.append(messages.OPERATOR_HELP)
        await self._notify(operator_id, "\n".join(lines))

    async def cmd_history(self, operator_id: str, args: str) -> None:
        target = args.split()[0] if args else ""
        if not target:
            await self._usage(operator_id, "history")
            return
        if not await self._registry.has_session(target):
            await self._notify(operator_id, messages.CHAT_NOT_FOUND.format(chat_id=target))
            return
        entries = await self._message_log.recent_messages(target, self.history_limit)
        if not entries:
            await self._notify(operator_id, messages.HISTORY_EMPTY.format(chat_id=target))
            return
        blocks = [messages.HISTORY_HEADER.format(chat_id=target)]
        for entry in entries:
            label = messages.ROLE_LABELS.get(entry.role.value, entry.role.value)
            stamp = entry.created_at.strftime("%Y-%m-%d %H:%M:%S")
            blocks.append(f"{label} ({stamp}):\n{entry.content}")
        await self._notify(operator_id, "\n\n".join(blocks))


__all__ = ["COMMAND_PATTERN", "CommandHandler", "ParsedCommand", "parse_command"]
