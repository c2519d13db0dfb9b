from .base import KeyValueStore
from .durable import DurableStore
from .memory import MemoryStorage
from .message_log import GuardedMessageLog, InMemoryMessageLog, MessageLog
from .redis_storage import RedisStorage

__all__ = [
    "DurableStore",
    "GuardedMessageLog",
    "InMemoryMessageLog",
    "KeyValueStore",
    "MemoryStorage",
    "MessageLog",
    "RedisStorage",
]
