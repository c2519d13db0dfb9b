from .handoff import (
    HandoffController,
    HandoffResult,
    HandoffState,
    HandoffStatus,
    contains_trigger,
    state_of,
)
from .registry import SESSION_KEY_PREFIX, SessionRegistry, session_key

__all__ = [
    "HandoffController",
    "HandoffResult",
    "HandoffState",
    "HandoffStatus",
    "SESSION_KEY_PREFIX",
    "SessionRegistry",
    "contains_trigger",
    "session_key",
    "state_of",
]
