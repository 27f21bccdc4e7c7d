"""
API Router configuration
"""

from fastapi import APIRouter

from app.api.v1 import (
    conversations,
    health,
    notifications,
    presence,
    ws_chat,
)
from app.core.config import settings

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(presence.router, prefix="/presence", tags=["presence"])
if settings.enable_websocket:
    api_router.include_router(ws_chat.router, prefix="/ws", tags=["websocket"])
