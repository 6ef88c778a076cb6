"""Chat orchestration: identity, conversation resolution, relay, and persistence."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from starlette.concurrency import run_in_threadpool

from godrick.auth.identity import IdentityResolver, Principal
from godrick.core import StoreError, ValidationError, get_logger, user_id_ctx
from godrick.core.metrics import metrics
from godrick.db.models import MessageRole
from godrick.db.repositories import derive_title
from godrick.db.store import ConversationStore
from godrick.providers.base import (
    ChatMessage,
    CompletedEvent,
    FailedEvent,
    ModelGateway,
    TokenEvent,
)
from godrick.services.prompts import SYSTEM_PROMPT
from godrick.services.streaming import EventStreamTransport

logger = get_logger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"


class ChatState(str, Enum):
    """Per-request lifecycle."""

    INIT = "init"
    IDENTIFIED = "identified"
    CONVERSATION_RESOLVED = "conversation_resolved"
    STREAMING = "streaming"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({ChatState.SUCCEEDED, ChatState.FAILED, ChatState.CANCELLED})

ALLOWED_TRANSITIONS: dict[ChatState, frozenset[ChatState]] = {
    ChatState.INIT: frozenset({ChatState.IDENTIFIED, ChatState.FAILED}),
    ChatState.IDENTIFIED: frozenset({ChatState.CONVERSATION_RESOLVED, ChatState.FAILED}),
    ChatState.CONVERSATION_RESOLVED: frozenset({ChatState.STREAMING, ChatState.FAILED}),
    ChatState.STREAMING: frozenset(
        {ChatState.PERSISTING, ChatState.FAILED, ChatState.CANCELLED}
    ),
    ChatState.PERSISTING: frozenset(
        {ChatState.SUCCEEDED, ChatState.FAILED, ChatState.CANCELLED}
    ),
    ChatState.SUCCEEDED: frozenset(),
    ChatState.FAILED: frozenset(),
    ChatState.CANCELLED: frozenset(),
}


class IllegalTransitionError(RuntimeError):
    """Raised when a chat turn is driven through an undefined transition."""


@dataclass
class ChatTurn:
    """Transient state of one chat request."""

    history: list[ChatMessage]
    principal: Principal | None = None
    conversation_id: str | None = None
    parts: list[str] = field(default_factory=list)
    states: list[ChatState] = field(default_factory=lambda: [ChatState.INIT])
    error: str | None = None

    @property
    def state(self) -> ChatState:
        return self.states[-1]

    @property
    def persistent(self) -> bool:
        return self.principal is not None and self.conversation_id is not None

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def advance(self, target: ChatState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise IllegalTransitionError(f"{self.state.value} -> {target.value}")
        self.states.append(target)

    def fail(self, reason: str) -> None:
        self.error = reason
        self.advance(ChatState.FAILED)


def validate_history(messages: Sequence[Any]) -> list[ChatMessage]:
    """
    Check a client-supplied history and convert it for the gateway.

    Raises:
        ValidationError: Empty history, unknown role, blank content, or a
            history that does not end with a user message.
    """
    if not messages:
        raise ValidationError("Messages array is required")

    roles = {role.value for role in MessageRole}
    history: list[ChatMessage] = []
    for index, message in enumerate(messages):
        role = getattr(message, "role", None)
        content = getattr(message, "content", None)
        if role not in roles:
            raise ValidationError(
                "Message role must be 'user' or 'assistant'", details={"index": index}
            )
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content must not be empty", details={"index": index})
        history.append(ChatMessage(role=role, content=content))

    if history[-1].role != MessageRole.USER.value:
        raise ValidationError("The last message must come from the user")
    return history


class ChatService:
    """Runs one chat turn per request and streams it as server-sent events."""

    def __init__(
        self,
        gateway: ModelGateway,
        store: ConversationStore,
        identity: IdentityResolver,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.gateway = gateway
        self.store = store
        self.identity = identity
        self.system_prompt = system_prompt

    async def stream_chat(
        self,
        *,
        messages: Sequence[Any],
        credential: str | None = None,
        conversation_id: str | None = None,
    ) -> AsyncIterator[str]:
        """
        Prepare a chat turn and return its event stream.

        Everything up to and including storing the user message happens before
        this returns, so failures there surface as ordinary HTTP errors.
        """
        turn = await self.prepare(
            messages=messages, credential=credential, conversation_id=conversation_id
        )
        return self.relay(turn)

    async def prepare(
        self,
        *,
        messages: Sequence[Any],
        credential: str | None = None,
        conversation_id: str | None = None,
    ) -> ChatTurn:
        """Validate, identify, resolve the conversation, and store the user message."""
        history = validate_history(messages)
        turn = ChatTurn(history=history)

        turn.principal = await run_in_threadpool(self.identity.resolve, credential)
        if turn.principal:
            user_id_ctx.set(turn.principal.user_id)
        turn.advance(ChatState.IDENTIFIED)

        turn.conversation_id = await self._resolve_conversation(turn, conversation_id)
        turn.advance(ChatState.CONVERSATION_RESOLVED)

        if turn.persistent:
            await self._persist(turn, MessageRole.USER, history[-1].content)

        return turn

    async def _resolve_conversation(
        self, turn: ChatTurn, requested_id: str | None
    ) -> str | None:
        principal = turn.principal
        if principal is None:
            return None

        if requested_id:
            try:
                conversation = await run_in_threadpool(
                    self.store.get_conversation, requested_id, principal.user_id
                )
            except StoreError:
                logger.warning(
                    "Conversation lookup failed, turn will not be stored",
                    data={"conversation_id": requested_id},
                )
                return None
            if conversation is not None:
                return conversation.id
            await self._log_unusable_conversation(requested_id)

        first_user = next(m for m in turn.history if m.role == MessageRole.USER.value)
        try:
            conversation = await run_in_threadpool(
                self.store.create_conversation,
                principal.user_id,
                derive_title(first_user.content),
            )
        except StoreError:
            logger.warning("Could not create conversation, turn will not be stored")
            return None

        logger.info("Conversation created", data={"conversation_id": conversation.id})
        return conversation.id

    async def _log_unusable_conversation(self, requested_id: str) -> None:
        # Both cases fall back to a fresh conversation; only the log differs
        try:
            exists = await run_in_threadpool(self.store.conversation_exists, requested_id)
        except StoreError:
            exists = None
        reason = {True: "foreign", False: "missing", None: "unknown"}[exists]
        logger.info(
            "Requested conversation not usable, starting a new one",
            data={"conversation_id": requested_id, "reason": reason},
        )

    async def _persist(self, turn: ChatTurn, role: MessageRole, content: str) -> None:
        """Best-effort append; failures are logged and counted, never raised."""
        try:
            message = await run_in_threadpool(
                self.store.append_message,
                turn.conversation_id,
                turn.principal.user_id,
                role,
                content,
            )
        except StoreError:
            message = None
        if message is None:
            metrics.increment("chat_persistence_failures_total")
            logger.warning(
                "Failed to store chat message",
                data={"conversation_id": turn.conversation_id, "role": role.value},
            )

    async def relay(self, turn: ChatTurn) -> AsyncIterator[str]:
        """Relay model output as SSE frames and store the completed reply."""
        transport = EventStreamTransport()
        turn.advance(ChatState.STREAMING)
        metrics.increment("chat_streams_total")
        metrics.adjust_gauge("active_streams", 1)
        started = time.perf_counter()

        events = self.gateway.stream_completion(turn.history, self.system_prompt)
        try:
            async for event in events:
                if isinstance(event, TokenEvent):
                    turn.parts.append(event.text)
                    yield transport.token(event.text)
                elif isinstance(event, CompletedEvent):
                    await events.aclose()
                    turn.advance(ChatState.PERSISTING)
                    if turn.persistent:
                        await self._persist(turn, MessageRole.ASSISTANT, turn.text)
                    turn.advance(ChatState.SUCCEEDED)
                    yield transport.done(event.message, turn.conversation_id)
                    return
                elif isinstance(event, FailedEvent):
                    turn.fail(event.reason)
                    metrics.increment("chat_stream_failures_total")
                    yield transport.error(event.reason)
                    return

            logger.error("Gateway stream ended without a terminal event")
            turn.fail(UNEXPECTED_ERROR_MESSAGE)
            metrics.increment("chat_stream_failures_total")
            yield transport.error(UNEXPECTED_ERROR_MESSAGE)
        except (asyncio.CancelledError, GeneratorExit):
            if turn.state not in TERMINAL_STATES:
                turn.advance(ChatState.CANCELLED)
                metrics.increment("chat_stream_cancellations_total")
                logger.info(
                    "Client disconnected, chat stream cancelled",
                    data={"conversation_id": turn.conversation_id, "chars": len(turn.text)},
                )
            raise
        except Exception as exc:
            logger.error(
                "Chat stream failed",
                exc_info=exc,
                data={"conversation_id": turn.conversation_id},
            )
            if turn.state not in TERMINAL_STATES:
                turn.fail(UNEXPECTED_ERROR_MESSAGE)
                metrics.increment("chat_stream_failures_total")
            if not transport.closed:
                yield transport.error(UNEXPECTED_ERROR_MESSAGE)
        finally:
            metrics.adjust_gauge("active_streams", -1)
            metrics.observe("stream_duration_seconds", time.perf_counter() - started)
            await events.aclose()
