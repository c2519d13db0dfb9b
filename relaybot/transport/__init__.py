from .polling import UpdatePoller
from .telegram import TelegramClient, describe_update, parse_update
from .typing_indicator import TypingIndicator

__all__ = [
    "TelegramClient",
    "TypingIndicator",
    "UpdatePoller",
    "describe_update",
    "parse_update",
]
