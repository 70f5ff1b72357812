"""API route definitions.

Uses a factory so tests can import route modules without settings loaded.
"""

from fastapi import APIRouter

from hearth.api.routes.chat import router as chat_router
from hearth.api.routes.health import router as health_router
from hearth.api.routes.photos import router as photos_router
from hearth.api.routes.push_devices import router as push_devices_router
from hearth.api.routes.ws_chat import router as ws_chat_router


def create_api_router() -> APIRouter:
    """Create the router with every HTTP and WebSocket route registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(chat_router, tags=["chat"])
    api_router.include_router(photos_router, tags=["photos"])
    api_router.include_router(push_devices_router, tags=["push"])
    api_router.include_router(ws_chat_router, tags=["realtime"])
    return api_router


__all__ = ["create_api_router"]
