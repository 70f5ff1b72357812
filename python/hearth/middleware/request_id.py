"""X-Request-ID middleware for request correlation and access logging.

- Accepts a well-formed incoming X-Request-ID (UUIDs are lowercased),
  otherwise generates a UUID4
- Stores it on request.state and in the logging context
- Echoes it on every HTTP response, including auth failures
- Emits one request_completed entry per request

Ordering: add it LAST so it runs FIRST and wraps the auth middleware.
WebSocket upgrades pass through untouched (BaseHTTPMiddleware only handles
http scopes).
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from hearth.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

VALID_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

# Polled by load balancers; not worth an access log line each
QUIET_PATHS = {"/health"}

logger = get_logger(__name__)


def is_valid_uuid(value: str) -> bool:
    return bool(UUID_PATTERN.match(value))


def is_valid_request_id(value: str) -> bool:
    """A request ID is at most 128 bytes and either a UUID or [A-Za-z0-9._-]+."""
    if len(value.encode("utf-8")) > MAX_REQUEST_ID_LENGTH:
        return False
    return is_valid_uuid(value) or bool(VALID_REQUEST_ID_PATTERN.match(value))


def normalize_request_id(value: str) -> str:
    return value.lower() if is_valid_uuid(value) else value


def generate_request_id() -> str:
    return str(uuid.uuid4())


def resolve_request_id(incoming: str | None) -> str:
    """Return the normalized incoming ID, or a fresh one if it is unusable."""
    if incoming and is_valid_request_id(incoming):
        return normalize_request_id(incoming)
    return generate_request_id()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Request ID handling and access logging.

    Args:
        app: The ASGI application.
        log_requests: If True, log one access entry per request.
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)

            viewer = getattr(request.state, "viewer", None)
            if viewer is not None:
                set_request_context(
                    request_id, user_id=str(viewer.user_id), family_id=str(viewer.family_id)
                )

            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests and request.url.path not in QUIET_PATHS:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                )
            return response

        except Exception:
            # unhandled_exception_handler renders the 500
            logger.exception("request_failed")
            raise

        finally:
            clear_request_context()
