"""Authentication module.

This module provides:
- Session token verification
- Auth middleware for FastAPI
- Request state with viewer identity
"""

from hearth.auth.middleware import AuthMiddleware, Viewer, get_viewer, resolve_viewer
from hearth.auth.session import mint_session_token, verify_session_token

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "resolve_viewer",
    "mint_session_token",
    "verify_session_token",
]
