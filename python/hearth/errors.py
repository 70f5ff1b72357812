"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
QueueFullError is an ApiError so a rejected submission that escapes to a route
renders as 503; PushNotEnabledError is internal to the push path. Both live here
since route handlers and services both need to recognize them.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_ORIGIN_FORBIDDEN = "E_ORIGIN_FORBIDDEN"
    E_DEVICE_TOKEN_OWNED = "E_DEVICE_TOKEN_OWNED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_MESSAGE_NOT_FOUND = "E_MESSAGE_NOT_FOUND"
    E_PHOTO_NOT_FOUND = "E_PHOTO_NOT_FOUND"
    E_DEVICE_TOKEN_NOT_FOUND = "E_DEVICE_TOKEN_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_FILE_TOO_LARGE = "E_FILE_TOO_LARGE"
    E_INVALID_FILE_TYPE = "E_INVALID_FILE_TYPE"

    # Server errors
    E_QUEUE_FULL = "E_QUEUE_FULL"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500
    E_STORAGE_ERROR = "E_STORAGE_ERROR"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_ORIGIN_FORBIDDEN: 403,
    ApiErrorCode.E_DEVICE_TOKEN_OWNED: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_MESSAGE_NOT_FOUND: 404,
    ApiErrorCode.E_PHOTO_NOT_FOUND: 404,
    ApiErrorCode.E_DEVICE_TOKEN_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_FILE_TOO_LARGE: 400,
    ApiErrorCode.E_INVALID_FILE_TYPE: 400,
    ApiErrorCode.E_QUEUE_FULL: 503,
    ApiErrorCode.E_INTERNAL: 500,
    ApiErrorCode.E_STORAGE_ERROR: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class QueueFullError(ApiError):
    """A bounded job queue rejected a submission because it is at capacity.

    Renders as 503 E_QUEUE_FULL when it reaches the route layer.
    """

    def __init__(self, queue_name: str, capacity: int):
        self.queue_name = queue_name
        self.capacity = capacity
        super().__init__(
            ApiErrorCode.E_QUEUE_FULL, f"{queue_name} queue is full (capacity {capacity})"
        )


class PushNotEnabledError(Exception):
    """Push delivery is not configured for this process."""
