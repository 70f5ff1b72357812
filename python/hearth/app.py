"""FastAPI application creation and configuration.

create_app() builds the long-lived components and hangs them on app.state:
- store: the embedded KV store
- registry: live chat connections by family
- media_queue: image variant worker
- push_queue: APNs delivery worker (disabled when APNs is not configured)

The lifespan starts the workers, sweeps Pending photos left by a previous
run, and runs the stale-connection reaper; on shutdown it stops them in
reverse and closes the store.

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST (add_request_id_middleware) so it runs
  FIRST and every response, auth failures included, carries X-Request-ID

Order of registration:
1. AuthMiddleware (http only)
2. WebSocketOriginMiddleware (websocket only, /ws/*)
3. RequestIDMiddleware (http only, outermost)
"""

import asyncio
import contextlib
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from hearth.api.routes import create_api_router
from hearth.auth.middleware import AuthMiddleware
from hearth.config import Settings, get_settings
from hearth.db.store import Store
from hearth.logging import configure_logging, get_logger
from hearth.middleware.request_id import RequestIDMiddleware
from hearth.middleware.ws_origin import WebSocketOriginMiddleware
from hearth.realtime.registry import ConnectionRegistry
from hearth.responses import register_exception_handlers
from hearth.services.apns import ApnsClient, load_apns_config
from hearth.services.image_processing import TranscodeResult, process_image
from hearth.tasks.sweep_pending import sweep_pending_images
from hearth.workers.media_queue import MediaJobQueue
from hearth.workers.push_queue import PushDeliveryQueue

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_apns_client(settings: Settings) -> ApnsClient | None:
    """APNs client from settings, or None when push is not configured."""
    config = load_apns_config(settings)
    if config is None:
        return None
    logger.info("push_enabled", bundle_id=config.bundle_id, key_id=config.key_id)
    return ApnsClient(config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the workers and the reaper; stop everything on shutdown."""
    state = app.state
    settings: Settings = state.settings

    state.media_queue.start()
    state.push_queue.start()

    if settings.sweep_pending_on_boot:
        await asyncio.to_thread(
            sweep_pending_images, state.store, state.media_queue, settings.static_dir
        )

    reaper = asyncio.create_task(state.registry.run_reaper(), name="ws-reaper")

    yield

    reaper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await reaper
    for conn in state.registry.all_connections():
        conn.close()
    state.media_queue.stop()
    state.push_queue.stop()
    if state.owns_store:
        state.store.close()
    logger.info("app_shutdown_complete")


def create_app(
    settings: Settings | None = None,
    store: Store | None = None,
    apns_client: ApnsClient | None = None,
    transcoder: Callable[[bytes, str], TranscodeResult] = process_image,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to get_settings()).
        store: An already open store; one is opened from settings otherwise.
        apns_client: APNs client to use instead of one built from settings.
        transcoder: Image transcoder for the media worker.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Hearth API",
        description="Backend API for Hearth - a private family portal",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.owns_store = store is None
    app.state.store = store or Store.open(settings.effective_database_path)
    app.state.registry = ConnectionRegistry()
    app.state.media_queue = MediaJobQueue(
        app.state.store,
        settings.static_dir,
        capacity=settings.media_queue_capacity,
        transcoder=transcoder,
    )
    app.state.push_queue = PushDeliveryQueue(
        app.state.store,
        apns_client if apns_client is not None else create_apns_client(settings),
        capacity=settings.push_queue_capacity,
    )

    register_exception_handlers(app)

    app.include_router(create_api_router())

    app.add_middleware(
        AuthMiddleware, store=app.state.store, cookie_name=settings.session_cookie_name
    )
    app.add_middleware(WebSocketOriginMiddleware, allowed_origins=settings.allowed_ws_origins)
    logger.info(
        "app_created",
        env=settings.hearth_env.value,
        push_enabled=app.state.push_queue.enabled,
        ws_origins=settings.allowed_ws_origins,
    )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    Call this AFTER all other middleware is added, so it runs FIRST.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
