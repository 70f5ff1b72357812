"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware resolving the session on HTTP requests
- resolve_viewer: Session token -> Viewer lookup, shared with the WebSocket route
- get_viewer: Dependency for accessing the authenticated viewer

WebSocket upgrades bypass BaseHTTPMiddleware; /ws/chat authenticates itself
with resolve_viewer.
"""

from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from hearth.auth.session import verify_session_token
from hearth.db.store import Store
from hearth.errors import ApiError, ApiErrorCode
from hearth.logging import get_logger, set_request_context
from hearth.responses import error_response
from hearth.services.users import get_user

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (from the session sub claim).
        family_id: The viewer's family; every read and write is scoped to it.
        name: Display name, denormalized onto chat messages.
    """

    user_id: int
    family_id: int
    name: str


def extract_token(headers, cookies, cookie_name: str) -> str | None:
    """Find a session token in a bearer header or the session cookie."""
    auth_header = headers.get(AUTHORIZATION_HEADER)
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    token = cookies.get(cookie_name)
    return token or None


def resolve_viewer(store: Store, token: str) -> Viewer:
    """Verify a session token and load the viewer it belongs to.

    Raises:
        ApiError: E_UNAUTHENTICATED if the token is invalid or the user is gone.
    """
    user_id = verify_session_token(token)
    with store.read_tx() as tx:
        user = get_user(tx, user_id)
    if user is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Unknown user")
    return Viewer(user_id=user.id, family_id=user.family_id, name=user.name)


class AuthMiddleware(BaseHTTPMiddleware):
    """Session authentication for every non-public HTTP path.

    Args:
        app: The ASGI application.
        store: KV store used to load the user.
        cookie_name: Name of the session cookie.
    """

    def __init__(self, app: ASGIApp, store: Store, cookie_name: str = "authToken"):
        super().__init__(app)
        self.store = store
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        token = extract_token(request.headers, request.cookies, self.cookie_name)
        if token is None:
            logger.warning("auth_failure", reason="missing_token", request_path=request.url.path)
            return JSONResponse(
                status_code=401,
                content=error_response(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required"),
            )

        try:
            viewer = resolve_viewer(self.store, token)
        except ApiError as e:
            return JSONResponse(
                status_code=e.status_code, content=error_response(e.code, e.message)
            )

        request.state.viewer = viewer
        set_request_context(
            getattr(request.state, "request_id", None),
            user_id=str(viewer.user_id),
            family_id=str(viewer.family_id),
        )
        return await call_next(request)


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer


# Type alias for dependency injection
ViewerDep = Depends(get_viewer)
