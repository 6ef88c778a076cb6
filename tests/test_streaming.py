"""Tests for server-sent event framing."""

import json

import pytest

from godrick.services.streaming import EventStreamTransport, TransportClosedError


def decode(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert "\n" not in frame[:-2]
    return json.loads(frame[len("data: "):-2])


def test_token_frame() -> None:
    transport = EventStreamTransport()
    assert decode(transport.token("Hel")) == {"type": "token", "content": "Hel"}
    assert not transport.closed


def test_multiline_token_stays_on_one_data_line() -> None:
    transport = EventStreamTransport()
    frame = transport.token("line one\nline two")
    assert decode(frame)["content"] == "line one\nline two"


def test_done_frame_carries_message_and_conversation_id() -> None:
    transport = EventStreamTransport()
    frame = transport.done({"id": "msg_1", "role": "assistant"}, "conv-1")
    assert decode(frame) == {
        "type": "done",
        "message": {"id": "msg_1", "role": "assistant"},
        "conversationId": "conv-1",
    }
    assert transport.closed


def test_done_frame_omits_missing_conversation_id() -> None:
    transport = EventStreamTransport()
    assert "conversationId" not in decode(transport.done({"id": "msg_1"}))


def test_error_frame() -> None:
    transport = EventStreamTransport()
    assert decode(transport.error("Provider unavailable")) == {
        "type": "error",
        "error": "Provider unavailable",
    }
    assert transport.closed


@pytest.mark.parametrize("terminal", ["done", "error"])
def test_nothing_can_be_framed_after_terminal_event(terminal: str) -> None:
    transport = EventStreamTransport()
    if terminal == "done":
        transport.done({})
    else:
        transport.error("boom")

    with pytest.raises(TransportClosedError):
        transport.token("late")
    with pytest.raises(TransportClosedError):
        transport.error("again")


def test_non_ascii_text_is_preserved() -> None:
    transport = EventStreamTransport()
    assert decode(transport.token("héllo 👋"))["content"] == "héllo 👋"
