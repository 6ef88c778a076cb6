"""HTTP routers."""

from godrick.api.auth import router as auth_router
from godrick.api.chat import router as chat_router
from godrick.api.conversations import router as conversations_router
from godrick.api.health import router as health_router

__all__ = [
    "auth_router",
    "chat_router",
    "conversations_router",
    "health_router",
]
