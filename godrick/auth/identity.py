"""
Identity resolution.

Maps a bearer credential to a Principal. Two modes:

- ``resolve``: optional. Missing, malformed, or invalid credentials and
  storage failures all degrade to anonymous (None).
- ``require``: strict. Raises 401 errors instead of returning None.

Both are synchronous; async callers run them in a threadpool.
"""

from dataclasses import dataclass

from godrick.auth.service import ACCESS_TOKEN, AuthService
from godrick.core import InvalidTokenError, StoreError, UnauthorizedError, get_logger
from godrick.db.store import ConversationStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """An authenticated user identity."""

    user_id: str
    email: str | None = None


class IdentityResolver:
    """Turns bearer tokens into principals, checking the user still exists."""

    def __init__(self, auth_service: AuthService, store: ConversationStore):
        self.auth_service = auth_service
        self.store = store

    def resolve(self, credential: str | None) -> Principal | None:
        if not credential:
            return None

        claims = self.auth_service.verify(credential, ACCESS_TOKEN)
        if claims is None:
            logger.debug("Ignoring invalid credential on optional-auth request")
            return None

        try:
            user = self.store.get_user(claims.user_id)
        except StoreError:
            logger.warning(
                "User lookup failed, continuing anonymously",
                data={"user_id": claims.user_id},
            )
            return None

        if user is None:
            return None
        return Principal(user_id=user.id, email=user.email)

    def require(self, credential: str | None) -> Principal:
        if not credential:
            raise UnauthorizedError("Access token required")

        claims = self.auth_service.verify(credential, ACCESS_TOKEN)
        if claims is None:
            raise InvalidTokenError("Invalid or expired token")

        user = self.store.get_user(claims.user_id)
        if user is None:
            raise InvalidTokenError("Invalid or expired token")
        return Principal(user_id=user.id, email=user.email)
