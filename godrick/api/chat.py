"""Streaming chat endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from godrick.auth import bearer_token
from godrick.core.logging import request_id_ctx
from godrick.services.chat_service import ChatService
from godrick.services.streaming import SSE_MEDIA_TYPE, EventStreamTransport

router = APIRouter(tags=["chat"])


class ChatMessageIn(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessageIn] = Field(default_factory=list)
    conversation_id: str | None = Field(None, alias="conversationId")


def get_chat_service(request: Request) -> ChatService:
    service = getattr(request.app.state, "chat_service", None)
    if service:
        return service
    state = request.app.state
    service = ChatService(gateway=state.gateway, store=state.store, identity=state.identity)
    state.chat_service = service
    return service


@router.post("/chat")
async def chat_route(
    body: ChatRequest,
    token: Annotated[str | None, Depends(bearer_token)],
    chat_service: Annotated[ChatService, Depends(get_chat_service)],
) -> StreamingResponse:
    """
    Stream a model reply as server-sent events.

    Authentication is optional: with a valid bearer token the turn is stored
    and the ``done`` event carries the conversation id.
    """
    stream = await chat_service.stream_chat(
        messages=body.messages,
        credential=token,
        conversation_id=body.conversation_id,
    )
    headers = dict(EventStreamTransport.headers)
    request_id = request_id_ctx.get()
    if request_id:
        headers["X-Request-ID"] = request_id
    return StreamingResponse(stream, media_type=SSE_MEDIA_TYPE, headers=headers)
