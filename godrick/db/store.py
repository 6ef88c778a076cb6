"""
Conversation store.

Facade over the repositories that owns session lifetimes. Each public method
opens its own session and commits at most once, so callers never observe a
partial write. Methods are synchronous; async callers run them in a threadpool.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from godrick.core import StoreError, get_logger
from godrick.db import repositories as repo
from godrick.db.models import Conversation, Message, MessageRole, User

logger = get_logger(__name__)


class ConversationStore:
    """Durable record of users, conversations, and messages."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(
                f"Store operation failed: {operation}",
                data={"operation": operation, "error": str(e)},
            )
            raise StoreError(f"Storage operation failed: {operation}") from e
        finally:
            session.close()

    # Conversations

    def create_conversation(self, owner_id: str, title: str | None = None) -> Conversation:
        with self._session("create_conversation") as db:
            return repo.create_conversation(db, owner_id, title)

    def get_conversation(self, conversation_id: str, owner_id: str) -> Conversation | None:
        with self._session("get_conversation") as db:
            return repo.get_user_conversation(db, owner_id, conversation_id)

    def get_conversation_with_messages(
        self, conversation_id: str, owner_id: str
    ) -> Conversation | None:
        with self._session("get_conversation_with_messages") as db:
            return repo.get_user_conversation(
                db, owner_id, conversation_id, with_messages=True
            )

    def list_conversations(self, owner_id: str) -> list[Conversation]:
        with self._session("list_conversations") as db:
            return repo.list_user_conversations(db, owner_id)

    def rename_conversation(
        self, conversation_id: str, owner_id: str, title: str
    ) -> Conversation | None:
        with self._session("rename_conversation") as db:
            return repo.update_conversation_title(db, owner_id, conversation_id, title)

    def delete_conversation(self, conversation_id: str, owner_id: str) -> bool:
        with self._session("delete_conversation") as db:
            return repo.delete_conversation(db, owner_id, conversation_id)

    def conversation_exists(self, conversation_id: str) -> bool:
        with self._session("conversation_exists") as db:
            return repo.conversation_exists(db, conversation_id)

    def append_message(
        self, conversation_id: str, owner_id: str, role: MessageRole | str, content: str
    ) -> Message | None:
        """Append a message; None when the conversation is not owned by ``owner_id``."""
        role_value = MessageRole(role).value
        with self._session("append_message") as db:
            return repo.append_message(db, owner_id, conversation_id, role_value, content)

    def list_messages(self, conversation_id: str, owner_id: str) -> list[Message] | None:
        with self._session("list_messages") as db:
            if repo.get_user_conversation(db, owner_id, conversation_id) is None:
                return None
            return repo.get_conversation_messages(db, conversation_id)

    # Users

    def create_user(
        self,
        email: str | None,
        password_hash: str | None,
        display_name: str | None = None,
    ) -> User:
        with self._session("create_user") as db:
            return repo.create_user(db, email, password_hash, display_name)

    def get_user(self, user_id: str) -> User | None:
        with self._session("get_user") as db:
            return repo.get_user_by_id(db, user_id)

    def get_user_by_email(self, email: str) -> User | None:
        with self._session("get_user_by_email") as db:
            return repo.get_user_by_email(db, email)

    def email_exists(self, email: str) -> bool:
        with self._session("email_exists") as db:
            return repo.email_exists(db, email)

    def find_or_create_oauth_user(
        self,
        provider: str,
        oauth_id: str,
        email: str | None = None,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> User:
        with self._session("find_or_create_oauth_user") as db:
            return repo.find_or_create_oauth_user(
                db, provider, oauth_id, email, display_name, avatar_url
            )

    def get_preferences(self, user_id: str) -> dict[str, Any] | None:
        with self._session("get_preferences") as db:
            return repo.get_user_preferences(db, user_id)

    def update_preferences(
        self, user_id: str, preferences: dict[str, Any]
    ) -> dict[str, Any] | None:
        with self._session("update_preferences") as db:
            return repo.update_user_preferences(db, user_id, preferences)


def get_store(request: Request) -> ConversationStore:
    """FastAPI dependency returning the store created at start-up."""
    return request.app.state.store
