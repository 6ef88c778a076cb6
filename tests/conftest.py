"""Shared fixtures: a migrated temporary SQLite database, a scripted gateway, and an app client."""

from __future__ import annotations

import asyncio
import gc
import json
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
from alembic import command
from alembic.config import Config
from argon2 import PasswordHasher
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from godrick.auth import AuthService, IdentityResolver
from godrick.config import Settings
from godrick.db import ConversationStore, User, create_db_engine, make_session_factory
from godrick.main import create_app
from godrick.providers.base import (
    ChatMessage,
    CompletedEvent,
    GatewayEvent,
    ModelGateway,
    TokenEvent,
)
from godrick.services import ChatService

PROJECT_ROOT = Path(__file__).resolve().parent.parent
TEST_PASSWORD = "correct-horse-battery"

# Stands in for "the upstream never answers" in gateway scripts
HANG = object()


def apply_migrations(db_url: str) -> None:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def completed(text: str) -> CompletedEvent:
    """A CompletedEvent shaped like an upstream final message."""
    return CompletedEvent(
        message={
            "id": "msg_test",
            "type": "message",
            "role": "assistant",
            "model": "test-model",
            "stop_reason": "end_turn",
            "content": [{"type": "text", "text": text}],
        },
        text=text,
    )


class FakeGateway(ModelGateway):
    """Gateway stub that plays back a scripted sequence of events."""

    name = "fake"

    def __init__(
        self,
        script: Sequence[GatewayEvent | BaseException | object] | None = None,
        on_call: Callable[[], None] | None = None,
    ):
        if script is None:
            script = [TokenEvent("Hello"), TokenEvent(" world"), completed("Hello world")]
        self.script = list(script)
        self.on_call = on_call
        self.calls: list[tuple[list[ChatMessage], str]] = []
        self.streams_closed = 0

    async def _stream(self, history, system_prompt):
        self.calls.append((list(history), system_prompt))
        if self.on_call:
            self.on_call()
        try:
            for step in self.script:
                await asyncio.sleep(0)
                if step is HANG:
                    await asyncio.Event().wait()
                if isinstance(step, BaseException):
                    raise step
                yield step
        finally:
            self.streams_closed += 1


def parse_sse(body: str) -> list[dict[str, Any]]:
    """Decode every ``data:`` frame of an event-stream body."""
    events = []
    for chunk in body.split("\n\n"):
        chunk = chunk.strip()
        if not chunk:
            continue
        assert chunk.startswith("data: "), chunk
        events.append(json.loads(chunk[len("data: "):]))
    return events


def count_rows(store: ConversationStore, model: type) -> int:
    with store._session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        secret_key="test-secret-key-for-testing-only",
        environment="development",
    )


@pytest.fixture
def engine(settings):
    apply_migrations(settings.database_url)
    engine = create_db_engine(settings.database_url)
    yield engine
    engine.dispose()
    gc.collect()


@pytest.fixture
def store(engine) -> ConversationStore:
    return ConversationStore(make_session_factory(engine))


@pytest.fixture
def auth_service(settings) -> AuthService:
    # Cheap Argon2 parameters keep the suite fast
    return AuthService(settings, hasher=PasswordHasher(time_cost=1, memory_cost=8, parallelism=1))


@pytest.fixture
def identity(auth_service, store) -> IdentityResolver:
    return IdentityResolver(auth_service, store)


@pytest.fixture
def make_user(store, auth_service) -> Callable[..., tuple[User, str]]:
    """Create a local user; returns (user, access token)."""
    counter = {"n": 0}

    def _make(email: str | None = None) -> tuple[User, str]:
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user = store.create_user(email, auth_service.hash_password(TEST_PASSWORD), email.split("@")[0])
        return user, auth_service.issue_access_token(user)

    return _make


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def chat_service(gateway, store, identity) -> ChatService:
    return ChatService(gateway=gateway, store=store, identity=identity, system_prompt="test prompt")


@pytest.fixture
def app(engine, store, auth_service, identity, gateway):
    app = create_app()
    app.state.engine = engine
    app.state.store = store
    app.state.auth_service = auth_service
    app.state.identity = identity
    app.state.gateway = gateway
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}

