"""Repository helpers for conversations and messages.

Every lookup is scoped by owner: a conversation that belongs to somebody else
is reported exactly like one that does not exist.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from godrick.core.time import utcnow_after
from godrick.db.models import DEFAULT_CONVERSATION_TITLE, Conversation, Message

TITLE_MAX_LENGTH = 50
TITLE_ELLIPSIS = "..."


def derive_title(content: str) -> str:
    """Conversation title from the first user message: 50 characters, "..." if cut."""
    if not content.strip():
        return DEFAULT_CONVERSATION_TITLE
    if len(content) > TITLE_MAX_LENGTH:
        return content[:TITLE_MAX_LENGTH] + TITLE_ELLIPSIS
    return content


def create_conversation(db: Session, user_id: str, title: str | None = None) -> Conversation:
    """Create a new conversation for the given user. Blank titles get the default."""
    conversation = Conversation(
        user_id=user_id,
        title=title if title and title.strip() else DEFAULT_CONVERSATION_TITLE,
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def get_user_conversation(
    db: Session, user_id: str, conversation_id: str, *, with_messages: bool = False
) -> Conversation | None:
    """Fetch conversation owned by user."""
    stmt = select(Conversation).where(
        Conversation.id == conversation_id,
        Conversation.user_id == user_id,
    )
    if with_messages:
        stmt = stmt.options(selectinload(Conversation.messages))
    return db.execute(stmt).scalar_one_or_none()


def conversation_exists(db: Session, conversation_id: str) -> bool:
    """Whether any user owns this id. Only used to tell "missing" from "foreign" in logs."""
    stmt = select(Conversation.id).where(Conversation.id == conversation_id)
    return db.execute(stmt).first() is not None


def list_user_conversations(db: Session, user_id: str) -> list[Conversation]:
    """List conversations belonging to the user, most recently updated first."""
    stmt = (
        select(Conversation)
        .where(Conversation.user_id == user_id)
        .order_by(Conversation.updated_at.desc())
    )
    return list(db.execute(stmt).scalars().all())


def update_conversation_title(
    db: Session, user_id: str, conversation_id: str, title: str
) -> Conversation | None:
    """Rename an existing conversation."""
    conversation = get_user_conversation(db, user_id, conversation_id)
    if not conversation:
        return None
    if title.strip():
        conversation.title = title.strip()
        conversation.updated_at = utcnow_after(conversation.updated_at)
    db.commit()
    db.refresh(conversation)
    return conversation


def delete_conversation(db: Session, user_id: str, conversation_id: str) -> bool:
    """Delete a conversation and cascade its messages."""
    conversation = get_user_conversation(db, user_id, conversation_id)
    if not conversation:
        return False
    db.delete(conversation)
    db.commit()
    return True


def append_message(
    db: Session,
    user_id: str,
    conversation_id: str,
    role: str,
    content: str,
) -> Message | None:
    """
    Append a message to a conversation owned by ``user_id``.

    The message and the conversation's new ``updated_at`` share one timestamp,
    strictly later than the previous ``updated_at``, and are committed together.

    Returns:
        The stored Message, or None if the conversation is not owned by the user.
    """
    conversation = get_user_conversation(db, user_id, conversation_id)
    if not conversation:
        return None

    timestamp = utcnow_after(conversation.updated_at)
    message = Message(
        conversation_id=conversation.id,
        role=role,
        content=content,
        created_at=timestamp,
    )
    conversation.updated_at = timestamp
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def get_conversation_messages(db: Session, conversation_id: str) -> list[Message]:
    """Get all messages for a conversation ordered by creation time."""
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc())
    )
    return list(db.execute(stmt).scalars().all())
