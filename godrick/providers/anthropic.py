"""Anthropic Messages API adapter (streaming)."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from godrick.config import Settings
from godrick.core import (
    ProviderAuthError,
    ProviderBadResponseError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    get_logger,
)
from godrick.providers.base import (
    ChatMessage,
    CompletedEvent,
    GatewayEvent,
    ModelGateway,
    TokenEvent,
)
from godrick.providers.http_client import (
    create_http_client,
    open_stream,
    parse_json,
    raise_for_status,
)

logger = get_logger(__name__)

MESSAGES_PATH = "/v1/messages"


class AnthropicGateway(ModelGateway):
    """Streams completions from the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str = "https://api.anthropic.com",
        api_version: str = "2023-06-01",
        max_tokens: int = 4096,
        timeout: float = 60,
        max_retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.client = create_http_client(
            base_url=base_url,
            timeout_seconds=timeout,
            headers={
                "x-api-key": api_key,
                "anthropic-version": api_version,
                "content-type": "application/json",
                "accept": "text/event-stream",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> AnthropicGateway:
        return cls(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            base_url=settings.anthropic_base_url,
            api_version=settings.anthropic_version,
            max_tokens=settings.anthropic_max_tokens,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def healthcheck(self) -> bool:
        """Check the API answers an authenticated model listing."""
        try:
            response = await self.client.get("/v1/models", params={"limit": 1})
        except httpx.HTTPError as exc:
            logger.warning("Anthropic healthcheck failed", data={"reason": str(exc)})
            return False
        return response.status_code == 200

    async def _stream(
        self, history: Sequence[ChatMessage], system_prompt: str
    ) -> AsyncIterator[GatewayEvent]:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": _format_messages(history),
            "stream": True,
        }

        response = await open_stream(
            self.client,
            "POST",
            MESSAGES_PATH,
            json=payload,
            max_retries=self.max_retries,
        )
        try:
            await raise_for_status(response)

            message: dict[str, Any] = {}
            parts: list[str] = []
            async for event_type, data in _iter_sse(response):
                body = parse_json(data)
                if not isinstance(body, dict):
                    raise ProviderBadResponseError(
                        "Provider returned invalid response", details={"body": data[:500]}
                    )
                kind = body.get("type") or event_type

                if kind == "message_start":
                    message = dict(body.get("message") or {})
                elif kind == "content_block_delta":
                    delta = body.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        parts.append(delta["text"])
                        yield TokenEvent(delta["text"])
                elif kind == "message_delta":
                    message.update(body.get("delta") or {})
                    usage = body.get("usage")
                    if usage:
                        message["usage"] = {**(message.get("usage") or {}), **usage}
                elif kind == "message_stop":
                    text = "".join(parts)
                    message["content"] = [{"type": "text", "text": text}]
                    yield CompletedEvent(message=message, text=text)
                    return
                elif kind == "error":
                    raise _stream_error(body.get("error") or {})
                # ping, content_block_start and content_block_stop carry nothing we need
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                "Provider timed out", details={"reason": str(exc)}
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                "Provider stream interrupted", details={"reason": str(exc)}
            ) from exc
        finally:
            await response.aclose()


async def _iter_sse(response: httpx.Response) -> AsyncIterator[tuple[str | None, str]]:
    """Yield (event name, data) pairs from a server-sent event body."""
    event_type: str | None = None
    data_lines: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield event_type, "\n".join(data_lines)
            event_type, data_lines = None, []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)
    if data_lines:
        yield event_type, "\n".join(data_lines)


def _stream_error(error: dict[str, Any]) -> Exception:
    """Map an in-stream error event to an AppError."""
    error_type = error.get("type") or "api_error"
    message = error.get("message") or "Provider error"
    details = {"type": error_type, "message": message}
    if error_type == "overloaded_error":
        return ProviderUnavailableError("Provider overloaded", details=details)
    if error_type == "rate_limit_error":
        return RateLimitError("Rate limit exceeded", details=details)
    if error_type in ("authentication_error", "permission_error"):
        return ProviderAuthError(details=details)
    if error_type == "invalid_request_error":
        return ProviderBadResponseError("Provider rejected the request", details=details)
    return ProviderError("Provider error", details=details)


def _format_messages(messages: Sequence[ChatMessage]) -> list[dict[str, str]]:
    """Convert ChatMessage objects to the Messages API shape."""
    return [{"role": msg.role, "content": msg.content} for msg in messages]
