"""Database repositories for data access."""

from godrick.db.repositories.conversation import (
    append_message,
    conversation_exists,
    create_conversation,
    delete_conversation,
    derive_title,
    get_conversation_messages,
    get_user_conversation,
    list_user_conversations,
    update_conversation_title,
)
from godrick.db.repositories.user import (
    create_user,
    email_exists,
    find_or_create_oauth_user,
    get_user_by_email,
    get_user_by_id,
    get_user_by_oauth,
    get_user_preferences,
    update_user_preferences,
)

__all__ = [
    # User
    "get_user_by_id",
    "get_user_by_email",
    "get_user_by_oauth",
    "create_user",
    "email_exists",
    "find_or_create_oauth_user",
    "get_user_preferences",
    "update_user_preferences",
    # Conversations
    "create_conversation",
    "conversation_exists",
    "list_user_conversations",
    "get_user_conversation",
    "update_conversation_title",
    "delete_conversation",
    "append_message",
    "get_conversation_messages",
    "derive_title",
]
