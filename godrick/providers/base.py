"""
Base model gateway interface.

A gateway turns a message history into an ordered stream of events: zero or
more TokenEvents followed by exactly one terminal event (CompletedEvent or
FailedEvent). Concrete gateways implement ``_stream``; the public
``stream_completion`` enforces the event contract around it.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

from godrick.core import AppError, ErrorCode, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    """A single history entry sent upstream."""

    role: str  # "user" or "assistant"
    content: str


@dataclass(frozen=True)
class TokenEvent:
    """A fragment of assistant text."""

    text: str
    terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class CompletedEvent:
    """Upstream finished. ``message`` is the provider's final message object."""

    message: dict[str, Any] = field(default_factory=dict)
    text: str = ""
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class FailedEvent:
    """Upstream failed. ``reason`` is safe to show to end users."""

    reason: str
    code: str = ErrorCode.PROVIDER_ERROR.value
    terminal: ClassVar[bool] = True


GatewayEvent = TokenEvent | CompletedEvent | FailedEvent


class ModelGateway(ABC):
    """Contract for hosted language model providers."""

    name: str = "base"

    async def stream_completion(
        self, history: Sequence[ChatMessage], system_prompt: str
    ) -> AsyncIterator[GatewayEvent]:
        """
        Stream a completion for ``history``.

        Guarantees: events arrive in provider order, exactly one terminal event
        is produced, and nothing follows it. Provider exceptions and a stream
        that ends without a terminal event become a FailedEvent. Closing this
        iterator closes the upstream stream.
        """
        inner = self._stream(history, system_prompt)
        try:
            async for event in inner:
                yield event
                if event.terminal:
                    return
            logger.warning("Provider stream ended without a terminal event", data={"provider": self.name})
            yield FailedEvent(
                "The model stream ended unexpectedly",
                ErrorCode.STREAMING_ERROR.value,
            )
        except AppError as exc:
            logger.warning(
                f"Provider error: {exc.message}",
                data={"provider": self.name, "code": exc.code.value, "details": exc.details},
            )
            yield FailedEvent(exc.message, exc.code.value)
        except Exception as exc:
            logger.error(
                "Unexpected provider failure",
                exc_info=exc,
                data={"provider": self.name},
            )
            yield FailedEvent("The model provider failed", ErrorCode.PROVIDER_ERROR.value)
        finally:
            await inner.aclose()

    @abstractmethod
    def _stream(
        self, history: Sequence[ChatMessage], system_prompt: str
    ) -> AsyncIterator[GatewayEvent]:
        """
        Provider-specific stream. Implement as an async generator.

        May raise AppError (or anything else) instead of yielding a FailedEvent.
        """
        ...

    async def healthcheck(self) -> bool:
        """Check provider reachability. Defaults to healthy."""
        return True

    async def aclose(self) -> None:
        """Release provider resources."""
        return None
