from .commands import CommandHandler, ParsedCommand, parse_command
from .dedupe import EventDeduplicator
from .service import RelayService

__all__ = [
    "CommandHandler",
    "EventDeduplicator",
    "ParsedCommand",
    "RelayService",
    "parse_command",
]
