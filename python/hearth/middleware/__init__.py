"""Middleware modules for the hearth API."""

from hearth.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware
from hearth.middleware.ws_origin import WebSocketOriginMiddleware

__all__ = ["REQUEST_ID_HEADER", "RequestIDMiddleware", "WebSocketOriginMiddleware"]
