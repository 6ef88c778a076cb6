"""Model gateways for hosted language model providers."""

from godrick.providers.anthropic import AnthropicGateway
from godrick.providers.base import (
    ChatMessage,
    CompletedEvent,
    FailedEvent,
    GatewayEvent,
    ModelGateway,
    TokenEvent,
)

__all__ = [
    "AnthropicGateway",
    "ChatMessage",
    "CompletedEvent",
    "FailedEvent",
    "GatewayEvent",
    "ModelGateway",
    "TokenEvent",
]
