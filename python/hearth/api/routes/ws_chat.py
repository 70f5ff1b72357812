"""Live chat WebSocket at /ws/chat.

Upgrade sequence:
1. WebSocketOriginMiddleware has already rejected foreign origins (403)
2. Authenticate from the session cookie (or a bearer header for native
   clients); failures are denied with HTTP 401 before accept
3. Accept, register with the family's registry, run the connection loops

The auth middleware only sees http scopes, so this route authenticates itself.
"""

import asyncio

from fastapi import APIRouter, WebSocket

from hearth.auth.middleware import extract_token, resolve_viewer
from hearth.errors import ApiError, ApiErrorCode
from hearth.logging import get_logger
from hearth.middleware.ws_origin import deny_websocket

logger = get_logger(__name__)

router = APIRouter()


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket) -> None:
    state = websocket.app.state
    token = extract_token(websocket.headers, websocket.cookies, state.settings.session_cookie_name)
    if token is None:
        logger.info("ws_auth_failure", reason="missing_token")
        await deny_websocket(
            websocket, 401, ApiErrorCode.E_UNAUTHENTICATED, "Authentication required"
        )
        return

    try:
        viewer = await asyncio.to_thread(resolve_viewer, state.store, token)
    except ApiError as e:
        logger.info("ws_auth_failure", reason=e.message)
        await deny_websocket(websocket, e.status_code, e.code, e.message)
        return

    await websocket.accept()
    conn = await asyncio.to_thread(
        state.registry.connect, websocket, viewer.user_id, viewer.family_id, viewer.name
    )
    await conn.serve()
