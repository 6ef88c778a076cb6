"""
Health check endpoints.

Liveness and readiness probes for load balancers and orchestrators.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from godrick import __version__
from godrick.config import get_settings
from godrick.core.metrics import metrics
from godrick.db import verify_database_connection

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthcheck() -> dict[str, Any]:
    """Liveness: the process is up and serving. Includes stream counters."""
    settings = get_settings()
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "debug": settings.debug,
        "metrics": metrics.snapshot(),
    }


@router.get("/readyz")
async def readiness(request: Request) -> JSONResponse:
    """
    Readiness: the database answers, and optionally the model provider does.

    Returns 503 when any check fails.
    """
    engine = getattr(request.app.state, "engine", None)
    checks: dict[str, bool] = {
        "database": await run_in_threadpool(verify_database_connection, engine),
    }

    settings = get_settings()
    if settings.readiness_check_providers:
        gateway = getattr(request.app.state, "gateway", None)
        checks["provider"] = bool(gateway is not None and await gateway.healthcheck())

    all_ready = all(checks.values())
    payload: dict[str, Any] = {
        "status": "ready" if all_ready else "not_ready",
        "timestamp": datetime.now(UTC).isoformat(),
        "checks": checks,
    }
    return JSONResponse(
        status_code=status.HTTP_200_OK if all_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=payload,
    )
