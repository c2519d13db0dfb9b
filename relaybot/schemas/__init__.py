from .events import InboundEvent, RelayOutcome, SenderRole
from .message import MessageLogEntry, MessageRole
from .session import ConversationSession, normalize_conversation_id

__all__ = [
    "ConversationSession",
    "InboundEvent",
    "MessageLogEntry",
    "MessageRole",
    "RelayOutcome",
    "SenderRole",
    "normalize_conversation_id",
]
