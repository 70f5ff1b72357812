"""Pure ASGI Origin check for /ws/* upgrades.

- Runs before the route accepts the socket
- Allowed origins are exact URLs or "scheme://host:*" patterns matching any port
- Upgrades without an Origin header (native clients, tests) pass through
- Rejections are an HTTP 403 denial response where the server supports
  the websocket.http.response extension, otherwise a 1008 close
- Non-websocket scopes pass through untouched
"""

from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocket

from hearth.errors import ApiErrorCode
from hearth.logging import get_logger
from hearth.responses import error_response

logger = get_logger(__name__)

WS_PATH_PREFIX = "/ws/"
DENIAL_EXTENSION = "websocket.http.response"

# Policy violation
CLOSE_POLICY_VIOLATION = 1008


def origin_allowed(origin: str, patterns: list[str]) -> bool:
    """Check an Origin header value against the allow-list."""
    origin = origin.rstrip("/").lower()
    for pattern in patterns:
        pattern = pattern.rstrip("/").lower()
        if pattern.endswith(":*"):
            host_prefix = pattern[:-1]
            if origin == host_prefix[:-1]:
                return True
            if origin.startswith(host_prefix) and origin[len(host_prefix) :].isdigit():
                return True
        elif origin == pattern:
            return True
    return False


async def deny_websocket(
    websocket: WebSocket, status_code: int, code: ApiErrorCode, message: str
) -> None:
    """Refuse an upgrade that has not been accepted yet."""
    if DENIAL_EXTENSION in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(
            JSONResponse(status_code=status_code, content=error_response(code, message))
        )
    else:
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason=message)


class WebSocketOriginMiddleware:
    """Reject /ws/* upgrades from origins outside the allow-list."""

    def __init__(self, app: ASGIApp, allowed_origins: list[str]):
        self.app = app
        self.allowed_origins = list(allowed_origins)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "websocket" or not scope["path"].startswith(WS_PATH_PREFIX):
            await self.app(scope, receive, send)
            return

        origin = Headers(scope=scope).get("origin")
        if origin is None or origin_allowed(origin, self.allowed_origins):
            await self.app(scope, receive, send)
            return

        logger.warning("ws_origin_rejected", origin=origin, path=scope["path"])
        websocket = WebSocket(scope, receive=receive, send=send)
        await deny_websocket(
            websocket, 403, ApiErrorCode.E_ORIGIN_FORBIDDEN, "Origin not allowed"
        )
