"""Response envelopes and the exception handlers that produce them.

Every JSON reply from /api is one of:
- { "data": ... }
- { "error": { "code": "E_...", "message": "...", "request_id": "..." } }

request_id is present on errors raised while serving a request, so a client
report can be matched to the server log line.

register_exception_handlers() installs the handlers below on an app:
- ApiError (and its subclasses, QueueFullError included): status from the code
- Framework HTTP errors (unknown route, wrong method): status kept, code mapped
- Request validation failures: 400 E_INVALID_REQUEST
- Anything else: logged, 500 E_INTERNAL with no detail
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from hearth.errors import ApiError, ApiErrorCode
from hearth.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Framework-raised statuses; anything unlisted is reported as E_INTERNAL
FRAMEWORK_STATUS_CODES: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    413: ApiErrorCode.E_FILE_TOO_LARGE,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    """Wrap a payload in the success envelope."""
    return {"data": data}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Build the error envelope.

    Args:
        code: Error code; rendered as its string value.
        message: Client-facing message.
        request_id: Correlation ID. Taken from the current request when None;
            the key is left out entirely when there is no request.
    """
    error: dict[str, str] = {"code": code.value, "message": message}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _error(status_code: int, code: ApiErrorCode, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Render an ApiError; server-side codes are logged before replying."""
    if exc.status_code >= 500:
        logger.warning(
            "api_error",
            code=exc.code.value,
            status=exc.status_code,
            path=request.url.path,
            error=exc.message,
        )
    return _error(exc.status_code, exc.code, exc.message)


async def framework_http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render routing errors raised by Starlette in the same envelope."""
    code = FRAMEWORK_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _error(exc.status_code, code, str(exc.detail or "Request failed"))


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed JSON and schema mismatches are both a bad request."""
    return _error(400, ApiErrorCode.E_INVALID_REQUEST, "Invalid request body")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the failure and answer 500 without leaking its detail."""
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
    return _error(500, ApiErrorCode.E_INTERNAL, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    """Install every envelope-producing handler on the app."""
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, framework_http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
