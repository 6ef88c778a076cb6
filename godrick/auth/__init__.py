"""Authentication: credentials, tokens, and identity resolution."""

from godrick.auth.dependencies import (
    RequireAuth,
    bearer_token,
    get_auth_service,
    get_identity_resolver,
    require_principal,
)
from godrick.auth.identity import IdentityResolver, Principal
from godrick.auth.service import (
    ACCESS_TOKEN,
    REFRESH_TOKEN,
    AuthService,
    TokenClaims,
    default_password_hasher,
)

__all__ = [
    "ACCESS_TOKEN",
    "REFRESH_TOKEN",
    "AuthService",
    "IdentityResolver",
    "Principal",
    "RequireAuth",
    "TokenClaims",
    "bearer_token",
    "default_password_hasher",
    "get_auth_service",
    "get_identity_resolver",
    "require_principal",
]
