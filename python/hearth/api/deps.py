"""FastAPI dependencies for route handlers.

The store, registry and worker queues are built in the application lifespan
and live on app.state; nothing here is a module-level singleton.
"""

from fastapi import Request

from hearth.config import Settings
from hearth.db.store import Store
from hearth.realtime.registry import ConnectionRegistry
from hearth.workers.media_queue import MediaJobQueue
from hearth.workers.push_queue import PushDeliveryQueue


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_media_queue(request: Request) -> MediaJobQueue:
    return request.app.state.media_queue


def get_push_queue(request: Request) -> PushDeliveryQueue:
    """The push queue; it exists even when APNs is not configured (disabled)."""
    return request.app.state.push_queue
