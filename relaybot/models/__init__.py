from .base import Base, IntegerPrimaryKeyMixin, TimestampMixin, utcnow
from .bot_instance import BotInstance
from .conversation import ConversationRecord
from .message_log import MessageLogRecord

__all__ = [
    "Base",
    "BotInstance",
    "ConversationRecord",
    "IntegerPrimaryKeyMixin",
    "MessageLogRecord",
    "TimestampMixin",
    "utcnow",
]
