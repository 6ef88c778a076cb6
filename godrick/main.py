"""
Godrick backend application.

FastAPI application with structured logging, error handling, and the
streaming chat pipeline.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from godrick import __version__
from godrick.api import auth_router, chat_router, conversations_router, health_router
from godrick.auth import AuthService, IdentityResolver
from godrick.config import get_settings
from godrick.core import (
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    get_logger,
    setup_exception_handlers,
    setup_logging,
)
from godrick.db import (
    ConversationStore,
    dispose_engine,
    get_engine,
    get_session_factory,
    make_session_factory,
    reset_session_factory,
    verify_database_connection,
)
from godrick.providers import AnthropicGateway

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown.

    Collaborators already present on ``app.state`` (e.g. set by tests) are
    kept and left for their owner to close.
    """
    settings = get_settings()
    state = app.state

    # Startup
    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting Godrick backend",
        data={
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
            "model": settings.anthropic_model,
        },
    )

    engine_created = not hasattr(state, "engine")
    if engine_created:
        state.engine = get_engine()

    # Verify database connectivity (does NOT run migrations)
    if verify_database_connection(state.engine):
        logger.info("Database connection verified")
    else:
        logger.warning("Database connection failed - run 'alembic upgrade head' to initialize")

    if not hasattr(state, "store"):
        session_factory = (
            get_session_factory() if engine_created else make_session_factory(state.engine)
        )
        state.store = ConversationStore(session_factory)
    if not hasattr(state, "auth_service"):
        state.auth_service = AuthService(settings)
    if not hasattr(state, "identity"):
        state.identity = IdentityResolver(state.auth_service, state.store)

    gateway_created = not hasattr(state, "gateway")
    if gateway_created:
        if not settings.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY is not set - chat requests will fail")
        state.gateway = AnthropicGateway.from_settings(settings)

    state.start_time = datetime.now(UTC)

    yield

    # Shutdown
    logger.info("Shutting down Godrick backend")
    if gateway_created:
        await state.gateway.aclose()
    if engine_created:
        dispose_engine()
        reset_session_factory()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Godrick",
        description="Streaming AI chat backend with optional conversation history",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Middleware order matters - last added = first executed
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_bytes)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(health_router)
    app.include_router(auth_router, prefix="/api")
    app.include_router(conversations_router, prefix="/api")
    app.include_router(chat_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "godrick.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_config=None,
    )
