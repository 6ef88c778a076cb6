"""Core module with errors, logging, middleware, and metrics."""

from godrick.core.errors import (
    AppError,
    AuthError,
    ClientError,
    ConversationNotFoundError,
    EmailTakenError,
    ErrorCode,
    ErrorResponse,
    InvalidCredentialsError,
    InvalidTokenError,
    ModelNotFoundError,
    ProviderAuthError,
    ProviderBadResponseError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    StoreError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from godrick.core.logging import get_logger, request_id_ctx, setup_logging, user_id_ctx
from godrick.core.middleware import (
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    setup_exception_handlers,
)

__all__ = [
    # Errors
    "AppError",
    "AuthError",
    "ClientError",
    "ConversationNotFoundError",
    "EmailTakenError",
    "ErrorCode",
    "ErrorResponse",
    "InvalidCredentialsError",
    "InvalidTokenError",
    "ModelNotFoundError",
    "ProviderAuthError",
    "ProviderBadResponseError",
    "ProviderError",
    "ProviderUnavailableError",
    "RateLimitError",
    "StoreError",
    "UnauthorizedError",
    "UpstreamError",
    "ValidationError",
    # Logging
    "get_logger",
    "request_id_ctx",
    "setup_logging",
    "user_id_ctx",
    # Middleware
    "RequestContextMiddleware",
    "RequestSizeLimitMiddleware",
    "setup_exception_handlers",
]
