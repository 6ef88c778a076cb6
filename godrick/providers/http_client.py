"""
Shared HTTP client helpers for provider adapters.

Consistent timeouts, connection retries, and status mapping so adapters raise
stable AppError instances without leaking stack traces.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx

from godrick.core import (
    AppError,
    ModelNotFoundError,
    ProviderAuthError,
    ProviderBadResponseError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    get_logger,
    request_id_ctx,
)

logger = get_logger(__name__)

STATUS_ERRORS: dict[int, type[AppError]] = {
    401: ProviderAuthError,
    403: ProviderAuthError,
    404: ModelNotFoundError,
    429: RateLimitError,
}


def create_http_client(
    base_url: str,
    timeout_seconds: float,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Build an AsyncClient with consistent timeout settings.

    Args:
        base_url: Base URL for the provider.
        timeout_seconds: Connect/read/write timeout. A read timeout also bounds
            the gap between two streamed chunks.
        headers: Default headers to include.
        transport: Optional transport (used by tests with MockTransport).
    """
    timeout = httpx.Timeout(timeout_seconds)
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        timeout=timeout,
        headers=headers or {},
        transport=transport,
    )


async def open_stream(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request and return the response with its body left unread.

    Only connection failures are retried; once the upstream has answered
    nothing is replayed. The caller must close the returned response.
    """
    headers = kwargs.pop("headers", None) or {}
    request_id = request_id_ctx.get()
    if request_id and "X-Request-ID" not in headers:
        headers["X-Request-ID"] = request_id
    request = client.build_request(method, url, headers=headers, **kwargs)

    for attempt in range(max_retries + 1):
        try:
            return await client.send(request, stream=True)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            if attempt < max_retries:
                logger.info(
                    "Provider connection failed, retrying",
                    data={"attempt": attempt + 1, "reason": str(exc)},
                )
                await asyncio.sleep(min(0.1 * (attempt + 1), 1.0))
                continue
            raise ProviderUnavailableError(
                "Provider unavailable", details={"reason": str(exc)}
            ) from exc
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                "Provider timed out", details={"reason": str(exc)}
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError("Provider request failed", details={"reason": str(exc)}) from exc

    raise ProviderUnavailableError("Provider unavailable")


async def raise_for_status(response: httpx.Response) -> None:
    """
    Raise the AppError matching an upstream error status.

    The body of an unread streaming response is read first so its error
    payload can be attached as details.
    """
    status = response.status_code
    if status < 400:
        return

    await response.aread()
    details = _safe_error_details(response)

    error_cls = STATUS_ERRORS.get(status)
    if error_cls is None:
        error_cls = ProviderUnavailableError if status >= 500 else ProviderError
    raise error_cls(details=details, status_code=status if error_cls is ProviderAuthError else None)


def parse_json(raw: str) -> Any:
    """Parse a JSON payload from the provider with consistent error handling."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderBadResponseError(
            "Provider returned invalid response",
            details={"body": raw[:500]},
        ) from exc


def _safe_error_details(response: httpx.Response) -> dict[str, Any]:
    """Return a small, non-sensitive error payload for debugging."""
    details: dict[str, Any] = {
        "status": response.status_code,
        "url": str(response.url),
    }
    try:
        payload = response.json()
    except ValueError:
        payload = None

    # Anthropic error bodies look like {"type": "error", "error": {"type", "message"}}
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        details["type"] = payload["error"].get("type")
        details["message"] = payload["error"].get("message")
    elif response.text:
        details["body"] = response.text[:300]
    return details
