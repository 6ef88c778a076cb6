"""
Credential handling: Argon2id password hashes and JWT access/refresh tokens.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from jose import JWTError, jwt

from godrick.config import Settings
from godrick.core import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def default_password_hasher() -> PasswordHasher:
    """Argon2id hasher tuned for typical server hardware."""
    return PasswordHasher(
        time_cost=3,
        memory_cost=65536,  # 64 MiB
        parallelism=4,
        hash_len=32,
        salt_len=16,
    )


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a token."""

    user_id: str
    email: str | None
    token_type: str
    expires_at: datetime


class AuthService:
    """Hashes and compares passwords, issues and verifies tokens."""

    def __init__(self, settings: Settings, hasher: PasswordHasher | None = None):
        self._secret = settings.secret_key
        self._algorithm = settings.jwt_algorithm
        self._access_ttl = timedelta(minutes=settings.access_token_ttl_minutes)
        self._refresh_ttl = timedelta(days=settings.refresh_token_ttl_days)
        self._hasher = hasher or default_password_hasher()

    def hash_password(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_password(self, password: str, password_hash: str | None) -> bool:
        """True if ``password`` matches. Accounts without a hash never match."""
        if not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    def issue_access_token(self, user: Any) -> str:
        return self._encode(user, ACCESS_TOKEN, self._access_ttl)

    def issue_refresh_token(self, user: Any) -> str:
        return self._encode(user, REFRESH_TOKEN, self._refresh_ttl)

    def verify(self, token: str, token_type: str = ACCESS_TOKEN) -> TokenClaims | None:
        """
        Decode and check a token.

        Returns None for malformed, expired, wrongly signed, or wrong-type tokens.
        """
        if not token:
            return None
        try:
            payload: dict[str, Any] = jwt.decode(
                token, self._secret, algorithms=[self._algorithm]
            )
        except JWTError as exc:
            logger.debug("Token rejected", data={"reason": str(exc)})
            return None

        if payload.get("type") != token_type or not payload.get("sub") or "exp" not in payload:
            return None

        return TokenClaims(
            user_id=str(payload["sub"]),
            email=payload.get("email"),
            token_type=token_type,
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )

    def _encode(self, user: Any, token_type: str, ttl: timedelta) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "type": token_type,
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)
