"""
User repository for database operations.
"""

import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from godrick.core import get_logger
from godrick.db.models import LOCAL_AUTH_PROVIDER, User

logger = get_logger(__name__)


def get_user_by_id(db: Session, user_id: str) -> User | None:
    """Get user by ID."""
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> User | None:
    """Get user by email (case-insensitive)."""
    if not email:
        return None
    stmt = select(User).where(User.email == email.strip().lower())
    return db.execute(stmt).scalar_one_or_none()


def get_user_by_oauth(db: Session, provider: str, oauth_id: str) -> User | None:
    """Get user by external provider and subject id."""
    stmt = select(User).where(User.auth_provider == provider, User.oauth_id == oauth_id)
    return db.execute(stmt).scalar_one_or_none()


def create_user(
    db: Session,
    email: str | None,
    password_hash: str | None,
    display_name: str | None = None,
    *,
    avatar_url: str | None = None,
    auth_provider: str = LOCAL_AUTH_PROVIDER,
    oauth_id: str | None = None,
) -> User:
    """
    Create a new user.

    Args:
        db: Database session.
        email: Email address, stored lower-cased. May be None for OAuth accounts.
        password_hash: Argon2id password hash, None for OAuth-only accounts.
        display_name: Name shown in the UI.
        avatar_url: Optional avatar reference.
        auth_provider: "local" or the external provider name.
        oauth_id: Subject id at the external provider.

    Returns:
        Created User object.
    """
    user = User(
        email=email.strip().lower() if email else None,
        password_hash=password_hash,
        display_name=display_name,
        avatar_url=avatar_url,
        auth_provider=auth_provider,
        oauth_id=oauth_id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def email_exists(db: Session, email: str) -> bool:
    """Check if email is taken."""
    if not email:
        return False
    return get_user_by_email(db, email) is not None


def find_or_create_oauth_user(
    db: Session,
    provider: str,
    oauth_id: str,
    email: str | None = None,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> User:
    """
    Resolve the local user for an external identity.

    Lookup order: (provider, oauth_id) pair, then email. An email match links
    the existing account to the provider; its password hash is kept and the
    avatar is only filled in when it had none.
    """
    user = get_user_by_oauth(db, provider, oauth_id)
    if user:
        return user

    if email:
        user = get_user_by_email(db, email)
        if user:
            user.auth_provider = provider
            user.oauth_id = oauth_id
            if not user.avatar_url:
                user.avatar_url = avatar_url
            db.commit()
            db.refresh(user)
            logger.info(
                "Linked external identity to existing account",
                data={"user_id": user.id, "provider": provider},
            )
            return user

    return create_user(
        db,
        email=email,
        password_hash=None,
        display_name=display_name or (email.split("@")[0] if email else None),
        avatar_url=avatar_url,
        auth_provider=provider,
        oauth_id=oauth_id,
    )


def get_user_preferences(db: Session, user_id: str) -> dict[str, Any] | None:
    """
    Parsed preference document for a user.

    Returns None for an unknown user and an empty dict when nothing usable is stored.
    """
    user = get_user_by_id(db, user_id)
    if not user:
        return None
    if not user.preferences:
        return {}
    try:
        preferences = json.loads(user.preferences)
    except ValueError:
        logger.warning("Stored preferences are not valid JSON", data={"user_id": user_id})
        return {}
    return preferences if isinstance(preferences, dict) else {}


def update_user_preferences(
    db: Session, user_id: str, preferences: dict[str, Any]
) -> dict[str, Any] | None:
    """Replace the preference document. Returns None if the user does not exist."""
    user = get_user_by_id(db, user_id)
    if not user:
        return None
    user.preferences = json.dumps(preferences)
    db.commit()
    return preferences
