"""Server-sent event framing for chat responses."""

from __future__ import annotations

import json
from typing import Any

SSE_MEDIA_TYPE = "text/event-stream"


class TransportClosedError(RuntimeError):
    """Raised when framing an event after the terminal event was sent."""


class EventStreamTransport:
    """
    Frames chat events as ``data: <json>`` followed by a blank line.

    ``done`` and ``error`` are terminal: they close the transport, and any
    further framing raises TransportClosedError.
    """

    media_type = SSE_MEDIA_TYPE
    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }

    def __init__(self) -> None:
        self.closed = False

    def token(self, text: str) -> str:
        return self._frame({"type": "token", "content": text})

    def done(self, message: dict[str, Any], conversation_id: str | None = None) -> str:
        payload: dict[str, Any] = {"type": "done", "message": message}
        if conversation_id:
            payload["conversationId"] = conversation_id
        return self._frame(payload, terminal=True)

    def error(self, text: str) -> str:
        return self._frame({"type": "error", "error": text}, terminal=True)

    def _frame(self, payload: dict[str, Any], terminal: bool = False) -> str:
        if self.closed:
            raise TransportClosedError(f"Cannot send '{payload['type']}' after the stream closed")
        if terminal:
            self.closed = True
        return f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"
