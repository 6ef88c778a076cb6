"""
FastAPI dependencies for authentication.

Credentials are read from the ``Authorization: Bearer <token>`` header.
"""

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from godrick.auth.identity import IdentityResolver, Principal
from godrick.auth.service import AuthService
from godrick.core import user_id_ctx

bearer_scheme = HTTPBearer(auto_error=False)

BearerCredentials = Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)]


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_identity_resolver(request: Request) -> IdentityResolver:
    return request.app.state.identity


def bearer_token(credentials: BearerCredentials) -> str | None:
    """Raw bearer token, or None when the header is absent."""
    return credentials.credentials if credentials else None


async def require_principal(
    token: Annotated[str | None, Depends(bearer_token)],
    identity: Annotated[IdentityResolver, Depends(get_identity_resolver)],
) -> Principal:
    """
    Require authentication.

    Raises:
        UnauthorizedError: If no bearer token was sent.
        InvalidTokenError: If the token is invalid or its user is gone.
    """
    principal = await run_in_threadpool(identity.require, token)
    user_id_ctx.set(principal.user_id)
    return principal


RequireAuth = Annotated[Principal, Depends(require_principal)]
