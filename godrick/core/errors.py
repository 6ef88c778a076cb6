"""
Application errors and the JSON error envelope.

Every error a client can see carries a stable code from ErrorCode. Handlers in
``godrick.core.middleware`` render them as
``{"error": {"code", "message", "request_id"?, "details"?}}``; stack traces
never leave the process.

Errors are grouped by who is at fault:

- ClientError: the request itself is wrong (4xx).
- AuthError: missing or rejected credentials (401/409).
- UpstreamError: the model provider failed. Inside a chat stream these turn
  into an in-band ``error`` event instead of an HTTP status.
- StoreError: the database failed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


class ErrorCode(str, Enum):
    """Stable error codes for API responses."""

    # Request errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"
    METHOD_NOT_ALLOWED = "E1003"
    REQUEST_TOO_LARGE = "E1004"
    RATE_LIMITED = "E1005"

    # Credential errors (2xxx)
    UNAUTHORIZED = "E2000"
    INVALID_CREDENTIALS = "E2001"
    INVALID_TOKEN = "E2002"
    EMAIL_TAKEN = "E2009"

    FORBIDDEN = "E3000"

    # Model provider errors (4xxx)
    PROVIDER_UNAVAILABLE = "E4000"
    PROVIDER_ERROR = "E4001"
    MODEL_NOT_FOUND = "E4002"
    STREAMING_ERROR = "E4003"
    PROVIDER_BAD_RESPONSE = "E4004"
    PROVIDER_AUTH_FAILED = "E4005"

    # Conversations (5xxx)
    CONVERSATION_NOT_FOUND = "E5000"

    # Storage (6xxx)
    STORE_ERROR = "E6000"


@dataclass(frozen=True)
class ErrorResponse:
    """Body of an error response."""

    code: ErrorCode
    message: str
    request_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.request_id:
            error["request_id"] = self.request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


class AppError(Exception):
    """
    Base application error.

    Subclasses set ``code``, ``status_code`` and ``default_message`` as class
    attributes; instances may override the message and attach details.
    """

    code: ClassVar[ErrorCode] = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    default_message: ClassVar[str] = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.default_message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            code=self.code,
            message=self.message,
            request_id=request_id,
            details=self.details,
        )


class ClientError(AppError):
    status_code = 400


class AuthError(AppError):
    status_code = 401


class UpstreamError(AppError):
    """The model provider failed or refused the request."""

    status_code = 502


class ValidationError(ClientError):
    code = ErrorCode.VALIDATION_ERROR
    default_message = "Validation error"


class ConversationNotFoundError(ClientError):
    """Conversation missing or owned by someone else. Both look the same."""

    code = ErrorCode.CONVERSATION_NOT_FOUND
    status_code = 404
    default_message = "Conversation not found"


class RateLimitError(ClientError):
    """Upstream rate limit (429), surfaced to the client as-is."""

    code = ErrorCode.RATE_LIMITED
    status_code = 429
    default_message = "Rate limit exceeded"


class UnauthorizedError(AuthError):
    code = ErrorCode.UNAUTHORIZED
    default_message = "Authentication required"


class InvalidTokenError(AuthError):
    code = ErrorCode.INVALID_TOKEN
    default_message = "Invalid or expired token"


class InvalidCredentialsError(AuthError):
    code = ErrorCode.INVALID_CREDENTIALS
    default_message = "Invalid email or password"


class EmailTakenError(AuthError):
    code = ErrorCode.EMAIL_TAKEN
    status_code = 409
    default_message = "Email already registered"


class ProviderError(UpstreamError):
    code = ErrorCode.PROVIDER_ERROR
    default_message = "Provider error"


class ProviderUnavailableError(UpstreamError):
    """Provider down, overloaded or timed out."""

    code = ErrorCode.PROVIDER_UNAVAILABLE
    status_code = 503
    default_message = "Provider unavailable"


class ProviderBadResponseError(UpstreamError):
    code = ErrorCode.PROVIDER_BAD_RESPONSE
    default_message = "Provider returned invalid response"


class ProviderAuthError(UpstreamError):
    """The configured API key was rejected (401/403 upstream)."""

    code = ErrorCode.PROVIDER_AUTH_FAILED
    status_code = 401
    default_message = "Provider authentication failed"


class ModelNotFoundError(UpstreamError):
    code = ErrorCode.MODEL_NOT_FOUND
    status_code = 404
    default_message = "Model not found"


class StoreError(AppError):
    """Persistence layer failure."""

    code = ErrorCode.STORE_ERROR
    default_message = "Storage operation failed"
