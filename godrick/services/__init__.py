"""Application services."""

from godrick.services.chat_service import (
    ChatService,
    ChatState,
    ChatTurn,
    IllegalTransitionError,
    validate_history,
)
from godrick.services.prompts import SYSTEM_PROMPT
from godrick.services.streaming import EventStreamTransport, TransportClosedError

__all__ = [
    "SYSTEM_PROMPT",
    "ChatService",
    "ChatState",
    "ChatTurn",
    "EventStreamTransport",
    "IllegalTransitionError",
    "TransportClosedError",
    "validate_history",
]
