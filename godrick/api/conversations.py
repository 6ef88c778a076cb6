"""Conversation management endpoints. All require a valid access token."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from godrick.auth import RequireAuth
from godrick.core import ConversationNotFoundError, ValidationError
from godrick.db.models import Conversation, Message
from godrick.db.store import ConversationStore, get_store

router = APIRouter(prefix="/conversations", tags=["conversations"])

Store = Annotated[ConversationStore, Depends(get_store)]


class CreateConversationRequest(BaseModel):
    title: str | None = Field(None, max_length=255)


class UpdateConversationRequest(BaseModel):
    title: str | None = Field(None, max_length=255)


def conversation_payload(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "user_id": conversation.user_id,
        "title": conversation.title,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
    }


def message_payload(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "role": message.role,
        "content": message.content,
        "created_at": message.created_at.isoformat(),
    }


@router.get("")
async def list_conversations_route(auth: RequireAuth, store: Store) -> dict[str, Any]:
    conversations = await run_in_threadpool(store.list_conversations, auth.user_id)
    return {"conversations": [conversation_payload(c) for c in conversations]}


@router.post("", status_code=201)
async def create_conversation_route(
    body: CreateConversationRequest, auth: RequireAuth, store: Store
) -> dict[str, Any]:
    title = body.title.strip() if body.title else None
    conversation = await run_in_threadpool(store.create_conversation, auth.user_id, title)
    return {"conversation": conversation_payload(conversation)}


@router.get("/{conversation_id}")
async def get_conversation_route(
    conversation_id: str, auth: RequireAuth, store: Store
) -> dict[str, Any]:
    """Conversation with its messages in creation order."""
    conversation = await run_in_threadpool(
        store.get_conversation_with_messages, conversation_id, auth.user_id
    )
    if not conversation:
        raise ConversationNotFoundError()
    payload = conversation_payload(conversation)
    payload["messages"] = [message_payload(m) for m in conversation.messages]
    return {"conversation": payload}


@router.put("/{conversation_id}")
@router.patch("/{conversation_id}")
async def rename_conversation_route(
    conversation_id: str,
    body: UpdateConversationRequest,
    auth: RequireAuth,
    store: Store,
) -> dict[str, Any]:
    if not body.title or not body.title.strip():
        raise ValidationError("Title is required")
    conversation = await run_in_threadpool(
        store.rename_conversation, conversation_id, auth.user_id, body.title
    )
    if not conversation:
        raise ConversationNotFoundError()
    return {"conversation": conversation_payload(conversation)}


@router.delete("/{conversation_id}")
async def delete_conversation_route(
    conversation_id: str, auth: RequireAuth, store: Store
) -> dict[str, Any]:
    deleted = await run_in_threadpool(store.delete_conversation, conversation_id, auth.user_id)
    if not deleted:
        raise ConversationNotFoundError()
    return {"success": True}
