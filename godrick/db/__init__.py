"""Database models, engine, session management, and the conversation store."""

from godrick.db.base import Base, TimestampMixin
from godrick.db.engine import (
    create_db_engine,
    dispose_engine,
    get_engine,
    verify_database_connection,
)
from godrick.db.models import Conversation, Message, MessageRole, User
from godrick.db.session import get_session_factory, make_session_factory, reset_session_factory
from godrick.db.store import ConversationStore, get_store

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Engine
    "create_db_engine",
    "get_engine",
    "verify_database_connection",
    "dispose_engine",
    # Session
    "get_session_factory",
    "make_session_factory",
    "reset_session_factory",
    # Models
    "Conversation",
    "Message",
    "MessageRole",
    "User",
    # Store
    "ConversationStore",
    "get_store",
]
