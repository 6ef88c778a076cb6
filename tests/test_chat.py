"""
Tests for chat orchestration: conversation resolution, relay, persistence,
failure handling, and client disconnects.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import HANG, FakeGateway, completed, count_rows, parse_sse
from godrick.core import ErrorCode, StoreError, ValidationError
from godrick.core.metrics import metrics
from godrick.db import Conversation, Message
from godrick.providers.base import ChatMessage, FailedEvent, TokenEvent
from godrick.services import ChatService, ChatState, ChatTurn, IllegalTransitionError


def user(content: str) -> ChatMessage:
    return ChatMessage(role="user", content=content)


def assistant(content: str) -> ChatMessage:
    return ChatMessage(role="assistant", content=content)


async def collect(stream) -> list[dict]:
    frames = [frame async for frame in stream]
    return parse_sse("".join(frames))


def stored_messages(store, conversation_id: str, owner_id: str) -> list[tuple[str, str]]:
    messages = store.list_messages(conversation_id, owner_id)
    return [(m.role, m.content) for m in messages]


def tokens_of(events: list[dict]) -> str:
    return "".join(e["content"] for e in events if e["type"] == "token")


@pytest.mark.asyncio
async def test_hi_scenario_creates_titled_conversation_with_two_messages(
    chat_service, store, make_user
) -> None:
    owner, token = make_user()

    stream = await chat_service.stream_chat(messages=[user("hi")], credential=token)
    events = await collect(stream)

    done = events[-1]
    assert done["type"] == "done"
    conversation_id = done["conversationId"]
    conversation = store.get_conversation(conversation_id, owner.id)
    assert conversation.title == "hi"
    assert stored_messages(store, conversation_id, owner.id) == [
        ("user", "hi"),
        ("assistant", "Hello world"),
    ]
    assert tokens_of(events) == "Hello world"
    assert done["message"]["content"][0]["text"] == "Hello world"


@pytest.mark.asyncio
async def test_long_first_message_title_is_truncated_with_ellipsis(
    chat_service, store, make_user
) -> None:
    owner, token = make_user()
    content = "x" * 40 + "y" * 20  # 60 characters

    events = await collect(await chat_service.stream_chat(messages=[user(content)], credential=token))

    conversation = store.get_conversation(events[-1]["conversationId"], owner.id)
    assert conversation.title == "x" * 40 + "y" * 10 + "..."


@pytest.mark.asyncio
async def test_title_comes_from_first_user_message(chat_service, store, make_user) -> None:
    owner, token = make_user()
    history = [user("first question"), assistant("first answer"), user("follow up")]

    events = await collect(await chat_service.stream_chat(messages=history, credential=token))

    conversation = store.get_conversation(events[-1]["conversationId"], owner.id)
    assert conversation.title == "first question"
    # Only the triggering message and the reply are stored
    assert stored_messages(store, conversation.id, owner.id) == [
        ("user", "follow up"),
        ("assistant", "Hello world"),
    ]


@pytest.mark.asyncio
async def test_anonymous_request_stores_nothing(chat_service, store, gateway) -> None:
    events = await collect(await chat_service.stream_chat(messages=[user("hi")]))

    assert [e["type"] for e in events] == ["token", "token", "done"]
    assert "conversationId" not in events[-1]
    assert count_rows(store, Conversation) == 0
    assert count_rows(store, Message) == 0
    assert len(gateway.calls) == 1


@pytest.mark.asyncio
async def test_invalid_credential_degrades_to_anonymous(chat_service, store) -> None:
    events = await collect(
        await chat_service.stream_chat(messages=[user("hi")], credential="not-a-jwt")
    )

    assert events[-1]["type"] == "done"
    assert count_rows(store, Conversation) == 0


@pytest.mark.asyncio
async def test_anonymous_failure_stores_nothing(store, identity) -> None:
    service = ChatService(
        gateway=FakeGateway([TokenEvent("par"), FailedEvent("upstream down")]),
        store=store,
        identity=identity,
    )

    events = await collect(await service.stream_chat(messages=[user("hi")]))

    assert events[-1] == {"type": "error", "error": "upstream down"}
    assert count_rows(store, Conversation) == 0
    assert count_rows(store, Message) == 0


@pytest.mark.asyncio
async def test_foreign_conversation_id_behaves_like_no_id(
    chat_service, store, make_user
) -> None:
    alice, _ = make_user()
    _, bob_token = make_user()
    alices = store.create_conversation(alice.id, "private")

    events = await collect(
        await chat_service.stream_chat(
            messages=[user("hi")], credential=bob_token, conversation_id=alices.id
        )
    )

    new_id = events[-1]["conversationId"]
    assert new_id != alices.id
    assert stored_messages(store, alices.id, alice.id) == []
    assert store.get_conversation(alices.id, alice.id).title == "private"


@pytest.mark.asyncio
async def test_unknown_conversation_id_starts_fresh(chat_service, store, make_user) -> None:
    owner, token = make_user()

    events = await collect(
        await chat_service.stream_chat(
            messages=[user("hi")], credential=token, conversation_id="does-not-exist"
        )
    )

    conversation_id = events[-1]["conversationId"]
    assert conversation_id != "does-not-exist"
    assert len(store.list_conversations(owner.id)) == 1


@pytest.mark.asyncio
async def test_owned_conversation_is_reused_without_retitling(
    chat_service, store, make_user
) -> None:
    owner, token = make_user()
    existing = store.create_conversation(owner.id, "Kept title")

    events = await collect(
        await chat_service.stream_chat(
            messages=[user("new topic")], credential=token, conversation_id=existing.id
        )
    )

    assert events[-1]["conversationId"] == existing.id
    assert store.get_conversation(existing.id, owner.id).title == "Kept title"
    assert len(store.list_conversations(owner.id)) == 1


@pytest.mark.asyncio
async def test_token_concatenation_matches_done_text(store, identity, make_user) -> None:
    owner, token = make_user()
    pieces = ["The", " quick", " brown", " fox", " ", "jumps"]
    service = ChatService(
        gateway=FakeGateway([TokenEvent(p) for p in pieces] + [completed("".join(pieces))]),
        store=store,
        identity=identity,
    )

    events = await collect(await service.stream_chat(messages=[user("go")], credential=token))

    assert [e["content"] for e in events[:-1]] == pieces
    assert tokens_of(events) == events[-1]["message"]["content"][0]["text"]
    stored = stored_messages(store, events[-1]["conversationId"], owner.id)
    assert stored[-1] == ("assistant", "The quick brown fox jumps")


@pytest.mark.asyncio
async def test_user_message_is_stored_before_gateway_is_called(
    store, identity, make_user
) -> None:
    owner, token = make_user()
    seen: list[list[tuple[str, str]]] = []

    def snapshot() -> None:
        conversations = store.list_conversations(owner.id)
        seen.append(stored_messages(store, conversations[0].id, owner.id))

    service = ChatService(
        gateway=FakeGateway(on_call=snapshot), store=store, identity=identity
    )
    await collect(await service.stream_chat(messages=[user("hi")], credential=token))

    assert seen == [[("user", "hi")]]


@pytest.mark.asyncio
async def test_gateway_receives_full_history_and_system_prompt(
    chat_service, gateway
) -> None:
    history = [user("one"), assistant("two"), user("three")]

    await collect(await chat_service.stream_chat(messages=history))

    sent, system_prompt = gateway.calls[0]
    assert sent == history
    assert system_prompt == "test prompt"


@pytest.mark.asyncio
async def test_failure_before_any_token_stores_only_user_message(
    store, identity, make_user
) -> None:
    owner, token = make_user()
    service = ChatService(
        gateway=FakeGateway([FailedEvent("Provider unavailable", ErrorCode.PROVIDER_UNAVAILABLE.value)]),
        store=store,
        identity=identity,
    )
    failures_before = metrics.counter("chat_stream_failures_total")

    events = await collect(await service.stream_chat(messages=[user("hi")], credential=token))

    assert events == [{"type": "error", "error": "Provider unavailable"}]
    conversations = store.list_conversations(owner.id)
    assert len(conversations) == 1
    assert stored_messages(store, conversations[0].id, owner.id) == [("user", "hi")]
    assert metrics.counter("chat_stream_failures_total") == failures_before + 1


@pytest.mark.asyncio
async def test_failure_mid_stream_does_not_store_partial_reply(
    store, identity, make_user
) -> None:
    owner, token = make_user()
    service = ChatService(
        gateway=FakeGateway([TokenEvent("partial"), FailedEvent("connection reset")]),
        store=store,
        identity=identity,
    )

    events = await collect(await service.stream_chat(messages=[user("hi")], credential=token))

    assert [e["type"] for e in events] == ["token", "error"]
    conversation = store.list_conversations(owner.id)[0]
    assert stored_messages(store, conversation.id, owner.id) == [("user", "hi")]


@pytest.mark.asyncio
async def test_gateway_exception_becomes_single_error_event(store, identity) -> None:
    service = ChatService(
        gateway=FakeGateway([TokenEvent("a"), RuntimeError("socket exploded")]),
        store=store,
        identity=identity,
    )

    events = await collect(await service.stream_chat(messages=[user("hi")]))

    assert [e["type"] for e in events] == ["token", "error"]
    assert "socket exploded" not in events[-1]["error"]


@pytest.mark.asyncio
async def test_nothing_is_relayed_after_terminal_event(store, identity) -> None:
    service = ChatService(
        gateway=FakeGateway([TokenEvent("a"), completed("a"), TokenEvent("late"), completed("late")]),
        store=store,
        identity=identity,
    )

    events = await collect(await service.stream_chat(messages=[user("hi")]))

    assert [e["type"] for e in events] == ["token", "done"]


@pytest.mark.asyncio
async def test_sequential_requests_append_in_order(chat_service, store, make_user) -> None:
    owner, token = make_user()

    first = await collect(await chat_service.stream_chat(messages=[user("hi")], credential=token))
    conversation_id = first[-1]["conversationId"]
    updated_first = store.get_conversation(conversation_id, owner.id).updated_at

    second = await collect(
        await chat_service.stream_chat(
            messages=[user("hi"), assistant("Hello world"), user("again")],
            credential=token,
            conversation_id=conversation_id,
        )
    )

    assert second[-1]["conversationId"] == conversation_id
    updated_second = store.get_conversation(conversation_id, owner.id).updated_at
    assert updated_second > updated_first
    messages = store.list_messages(conversation_id, owner.id)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "hi"),
        ("assistant", "Hello world"),
        ("user", "again"),
        ("assistant", "Hello world"),
    ]
    timestamps = [m.created_at for m in messages]
    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)


@pytest.mark.asyncio
async def test_assistant_persistence_failure_is_swallowed(
    store, identity, make_user, monkeypatch
) -> None:
    owner, token = make_user()
    service = ChatService(gateway=FakeGateway(), store=store, identity=identity)
    original_append = store.append_message

    def failing_append(conversation_id, owner_id, role, content):
        if str(getattr(role, "value", role)) == "assistant":
            raise StoreError("disk full")
        return original_append(conversation_id, owner_id, role, content)

    monkeypatch.setattr(store, "append_message", failing_append)
    failures_before = metrics.counter("chat_persistence_failures_total")

    events = await collect(await service.stream_chat(messages=[user("hi")], credential=token))

    assert events[-1]["type"] == "done"
    assert metrics.counter("chat_persistence_failures_total") == failures_before + 1
    conversation_id = events[-1]["conversationId"]
    assert stored_messages(store, conversation_id, owner.id) == [("user", "hi")]


@pytest.mark.asyncio
async def test_conversation_creation_failure_still_streams(
    store, identity, make_user, monkeypatch
) -> None:
    _, token = make_user()
    service = ChatService(gateway=FakeGateway(), store=store, identity=identity)

    def broken_create(*_args, **_kwargs):
        raise StoreError("locked")

    monkeypatch.setattr(store, "create_conversation", broken_create)

    events = await collect(await service.stream_chat(messages=[user("hi")], credential=token))

    assert events[-1]["type"] == "done"
    assert "conversationId" not in events[-1]
    assert count_rows(store, Message) == 0


@pytest.mark.parametrize(
    "messages",
    [
        [],
        [ChatMessage(role="system", content="be nice")],
        [ChatMessage(role="user", content="   ")],
        [ChatMessage(role="user", content="hi"), ChatMessage(role="assistant", content="hello")],
    ],
)
@pytest.mark.asyncio
async def test_invalid_history_is_rejected_before_gateway(
    chat_service, gateway, store, make_user, messages
) -> None:
    _, token = make_user()

    with pytest.raises(ValidationError):
        await chat_service.stream_chat(messages=messages, credential=token)

    assert gateway.calls == []
    assert count_rows(store, Conversation) == 0


@pytest.mark.asyncio
async def test_client_disconnect_cancels_upstream_and_skips_reply(
    store, identity, make_user
) -> None:
    owner, token = make_user()
    gateway = FakeGateway([TokenEvent("partial"), HANG, completed("partial answer")])
    service = ChatService(gateway=gateway, store=store, identity=identity)
    cancellations_before = metrics.counter("chat_stream_cancellations_total")

    turn = await service.prepare(messages=[user("hi")], credential=token)
    stream = service.relay(turn)
    frames: list[str] = []

    async def consume() -> None:
        async for frame in stream:
            frames.append(frame)

    task = asyncio.create_task(consume())
    for _ in range(50):
        if frames:
            break
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(frames) == 1
    assert turn.state is ChatState.CANCELLED
    assert gateway.streams_closed == 1
    assert metrics.counter("chat_stream_cancellations_total") == cancellations_before + 1
    assert stored_messages(store, turn.conversation_id, owner.id) == [("user", "hi")]


@pytest.mark.asyncio
async def test_closing_the_stream_early_marks_turn_cancelled(chat_service, gateway) -> None:
    turn = await chat_service.prepare(messages=[user("hi")])
    stream = chat_service.relay(turn)

    first = await stream.__anext__()
    await stream.aclose()

    assert parse_sse(first) == [{"type": "token", "content": "Hello"}]
    assert turn.state is ChatState.CANCELLED
    assert gateway.streams_closed == 1


@pytest.mark.asyncio
async def test_turn_records_visited_states(chat_service, make_user) -> None:
    _, token = make_user()

    turn = await chat_service.prepare(messages=[user("hi")], credential=token)
    await collect(chat_service.relay(turn))

    assert turn.states == [
        ChatState.INIT,
        ChatState.IDENTIFIED,
        ChatState.CONVERSATION_RESOLVED,
        ChatState.STREAMING,
        ChatState.PERSISTING,
        ChatState.SUCCEEDED,
    ]
    assert turn.principal is not None
    assert turn.text == "Hello world"


def test_illegal_transition_raises() -> None:
    turn = ChatTurn(history=[user("hi")])

    with pytest.raises(IllegalTransitionError):
        turn.advance(ChatState.STREAMING)

    turn.advance(ChatState.IDENTIFIED)
    turn.fail("boom")
    with pytest.raises(IllegalTransitionError):
        turn.advance(ChatState.CANCELLED)
    assert turn.error == "boom"
