from __future__ import annotations

from .auth import router as auth_router
from .chat import chat_router

__all__ = [
    "auth_router",
    "chat_router",
]
