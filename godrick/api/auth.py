"""
Authentication API endpoints.

Local registration and login, token refresh, the current user, and
per-user preferences.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from starlette.concurrency import run_in_threadpool

from godrick.auth import REFRESH_TOKEN, AuthService, RequireAuth, get_auth_service
from godrick.core import (
    EmailTakenError,
    InvalidCredentialsError,
    InvalidTokenError,
    get_logger,
)
from godrick.db.models import User
from godrick.db.store import ConversationStore, get_store

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

Auth = Annotated[AuthService, Depends(get_auth_service)]
Store = Annotated[ConversationStore, Depends(get_store)]

SOCIAL_ACCOUNT_MESSAGE = "Please login with your social account"


# Request schemas
class RegisterRequest(BaseModel):
    """Registration request body."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    display_name: str | None = Field(None, alias="displayName", max_length=255)

    model_config = {"populate_by_name": True}


class LoginRequest(BaseModel):
    """Login request body."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., alias="refreshToken", min_length=1)

    model_config = {"populate_by_name": True}


class PreferencesRequest(BaseModel):
    preferences: dict[str, Any]


def user_payload(user: User) -> dict[str, Any]:
    """Public view of a user. Never includes the password hash."""
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "avatar_url": user.avatar_url,
        "auth_provider": user.auth_provider,
        "created_at": user.created_at.isoformat(),
    }


def _token_response(auth: AuthService, user: User) -> dict[str, Any]:
    return {
        "user": user_payload(user),
        "accessToken": auth.issue_access_token(user),
        "refreshToken": auth.issue_refresh_token(user),
    }


@router.post("/register", status_code=201)
async def register(body: RegisterRequest, auth: Auth, store: Store) -> dict[str, Any]:
    """
    Register a local account.

    The display name defaults to the local part of the email address.
    """
    email = str(body.email).lower()
    if await run_in_threadpool(store.email_exists, email):
        raise EmailTakenError()

    password_hash = await run_in_threadpool(auth.hash_password, body.password)
    display_name = (body.display_name or "").strip() or email.split("@")[0]
    user = await run_in_threadpool(store.create_user, email, password_hash, display_name)

    logger.info("User registered", data={"user_id": user.id})
    return _token_response(auth, user)


@router.post("/login")
async def login(body: LoginRequest, auth: Auth, store: Store) -> dict[str, Any]:
    """Exchange email and password for a token pair."""
    user = await run_in_threadpool(store.get_user_by_email, str(body.email))
    if not user:
        raise InvalidCredentialsError()

    if not user.password_hash:
        raise InvalidCredentialsError(SOCIAL_ACCOUNT_MESSAGE)

    valid = await run_in_threadpool(auth.verify_password, body.password, user.password_hash)
    if not valid:
        logger.info("Failed login attempt", data={"user_id": user.id})
        raise InvalidCredentialsError()

    return _token_response(auth, user)


@router.post("/refresh")
async def refresh(body: RefreshRequest, auth: Auth, store: Store) -> dict[str, Any]:
    """Issue a new access token from a refresh token."""
    claims = auth.verify(body.refresh_token, REFRESH_TOKEN)
    if claims is None:
        raise InvalidTokenError("Invalid refresh token")

    user = await run_in_threadpool(store.get_user, claims.user_id)
    if not user:
        raise InvalidTokenError("Invalid refresh token")

    return {"accessToken": auth.issue_access_token(user)}


@router.get("/me")
async def me(principal: RequireAuth, store: Store) -> dict[str, Any]:
    user = await run_in_threadpool(store.get_user, principal.user_id)
    if not user:
        raise InvalidTokenError()
    return {"user": user_payload(user)}


@router.get("/preferences")
async def get_preferences(principal: RequireAuth, store: Store) -> dict[str, Any]:
    preferences = await run_in_threadpool(store.get_preferences, principal.user_id)
    return {"preferences": preferences or {}}


@router.put("/preferences")
async def update_preferences(
    body: PreferencesRequest, principal: RequireAuth, store: Store
) -> dict[str, Any]:
    """
    Replace the caller's preferences.

    The document is stored as-is. Keys like ``theme``, ``font`` and
    ``customAccent`` are interpreted by the client, not validated here.
    """
    preferences = await run_in_threadpool(
        store.update_preferences, principal.user_id, body.preferences
    )
    if preferences is None:
        raise InvalidTokenError()
    return {"preferences": preferences}
