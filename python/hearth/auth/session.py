"""Session tokens: verify (and, for seeding and tests, mint) session JWTs.

- HS256 signed with SESSION_SIGNING_KEY
- Claims: iss=hearth-session, sub=user_id, iat, exp
- Carried in the session cookie (browsers, WebSocket upgrade) or a bearer
  header (mobile clients)
"""

import time

import jwt

from hearth.config import get_settings
from hearth.errors import ApiError, ApiErrorCode
from hearth.logging import get_logger

logger = get_logger(__name__)

SESSION_TOKEN_ISSUER = "hearth-session"


def mint_session_token(user_id: int, ttl_s: int | None = None) -> str:
    """Mint a session token for a user.

    Login flows are handled elsewhere; this exists for dev seeding and tests.
    """
    settings = get_settings()
    now = int(time.time())
    payload = {
        "iss": SESSION_TOKEN_ISSUER,
        "sub": str(user_id),
        "iat": now,
        "exp": now + (ttl_s if ttl_s is not None else settings.session_ttl_s),
    }
    return jwt.encode(payload, settings.effective_session_signing_key, algorithm="HS256")


def verify_session_token(token: str) -> int:
    """Verify a session token and return its user id.

    Raises:
        ApiError: E_UNAUTHENTICATED on any verification failure.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.effective_session_signing_key,
            algorithms=["HS256"],
            issuer=SESSION_TOKEN_ISSUER,
            options={"require": ["exp", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError as err:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Session has expired") from err
    except jwt.InvalidTokenError as e:
        logger.warning("session_token_invalid", error=str(e))
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid session") from e

    try:
        return int(payload["sub"])
    except (TypeError, ValueError) as e:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid session") from e
