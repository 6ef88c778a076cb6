"""
Request middleware and global exception handlers.

- RequestContextMiddleware: assigns or echoes ``X-Request-ID`` and scopes
  the logging context variables to the request.
- RequestSizeLimitMiddleware: refuses bodies above ``max_request_bytes``.
- setup_exception_handlers: renders every failure in the error envelope.
"""

import time
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from godrick.core.errors import AppError, ErrorCode, ErrorResponse, StoreError
from godrick.core.logging import get_logger, request_id_ctx, user_id_ctx

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

HTTP_STATUS_CODES = {
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    413: ErrorCode.REQUEST_TOO_LARGE,
    429: ErrorCode.RATE_LIMITED,
}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log its outcome."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request_id_token = request_id_ctx.set(request_id)
        user_id_token = user_id_ctx.set(None)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            streaming = response.headers.get("content-type", "").startswith("text/event-stream")
            logger.info(
                "Stream opened" if streaming else "Request completed",
                data={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return response
        finally:
            request_id_ctx.reset(request_id_token)
            user_id_ctx.reset(user_id_token)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose declared Content-Length exceeds ``max_bytes``."""

    def __init__(self, app: FastAPI, max_bytes: int = 1048576):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length", "")
        if content_length.isdigit() and int(content_length) > self.max_bytes:
            logger.warning(
                "Request body too large",
                data={"content_length": int(content_length), "max_bytes": self.max_bytes},
            )
            return error_json(
                ErrorCode.REQUEST_TOO_LARGE,
                f"Request body exceeds {self.max_bytes} bytes",
                413,
            )
        return await call_next(request)


def error_json(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Render the error envelope for the current request."""
    request_id = request_id_ctx.get()
    body = ErrorResponse(code=code, message=message, request_id=request_id, details=details)
    return JSONResponse(
        status_code=status_code,
        content=body.to_dict(),
        headers={REQUEST_ID_HEADER: request_id} if request_id else {},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register envelope-rendering handlers on ``app``."""

    @app.exception_handler(AppError)
    async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(exc.message, data={"code": exc.code.value, "details": exc.details})
        return error_json(exc.code, exc.message, exc.status_code, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {k: v for k, v in error.items() if k not in {"ctx", "input", "url"}}
            for error in exc.errors()
        ]
        return error_json(
            ErrorCode.VALIDATION_ERROR, "Validation error", 422, {"errors": errors}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        _request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        code = HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        return error_json(code, str(exc.detail or "HTTP error"), exc.status_code)

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(
            "Unhandled storage error",
            exc_info=exc,
            data={"path": request.url.path, "method": request.method},
        )
        error = StoreError()
        return error_json(error.code, error.message, error.status_code)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            data={"path": request.url.path, "method": request.method},
        )
        return error_json(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred", 500)
