"""Campool Chat Routers Package"""

from campool_chat.routers import (
    chat,
    websocket,
)

__all__ = [
    "chat",
    "websocket",
]
