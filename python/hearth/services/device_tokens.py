"""Push device token registry.

Tokens are keyed by the opaque provider token string, which is unique
across all records. Deactivation is a soft delete: the record stays with
active=False so it can be audited and so a re-registration reuses its id.

A token string can move to another user (devices get handed over, people
sign out and in). Whether that is allowed is the caller's decision via
allow_transfer; the result always reports the previous owner.

All functions take an open transaction. Mutating functions do not commit.
"""

import re
from dataclasses import dataclass

from hearth.db.records import (
    PUSH_DEVICE_TOKEN_BY_TOKEN,
    PUSH_DEVICE_TOKEN_BY_USER,
    PUSH_DEVICE_TOKENS,
    DeviceToken,
    utcnow,
)
from hearth.db.store import Tx
from hearth.errors import ApiErrorCode, ForbiddenError, InvalidRequestError, NotFoundError
from hearth.logging import get_logger

logger = get_logger(__name__)

PLATFORMS = frozenset({"ios", "android"})
ENVIRONMENTS = frozenset({"sandbox", "production"})
MAX_TOKEN_LENGTH = 512

# APNs tokens are hex; FCM tokens are URL-safe base64 with ":" separators
TOKEN_PATTERNS = {
    "ios": re.compile(r"[0-9a-fA-F]+"),
    "android": re.compile(r"[A-Za-z0-9_:.-]+"),
}


@dataclass
class DeviceRegistration:
    """Outcome of register_device.

    Attributes:
        device: The stored token record.
        created: True if a new record was inserted.
        previous_user_id: Owner before this call when the token moved users.
    """

    device: DeviceToken
    created: bool
    previous_user_id: int | None = None

    @property
    def transferred(self) -> bool:
        return self.previous_user_id is not None


def validate_registration(token: str, platform: str, environment: str, bundle_id: str) -> None:
    """Check a registration request.

    Raises:
        InvalidRequestError: On a missing token or bundle id, a token with
            characters its platform never issues, or an unknown platform or
            environment.
    """
    if not token or not token.strip():
        raise InvalidRequestError(message="Device token is required")
    if len(token) > MAX_TOKEN_LENGTH:
        raise InvalidRequestError(message="Device token is too long")
    if platform not in PLATFORMS:
        raise InvalidRequestError(message="Platform must be 'ios' or 'android'")
    if not TOKEN_PATTERNS[platform].fullmatch(token):
        raise InvalidRequestError(message="Device token has invalid characters")
    if environment not in ENVIRONMENTS:
        raise InvalidRequestError(message="Environment must be 'sandbox' or 'production'")
    if not bundle_id:
        raise InvalidRequestError(message="Bundle ID is required")


def get_by_id(tx: Tx, device_id: int) -> DeviceToken | None:
    return tx.read(PUSH_DEVICE_TOKENS, device_id)


def get_by_token(tx: Tx, token: str) -> DeviceToken | None:
    device_id = tx.read(PUSH_DEVICE_TOKEN_BY_TOKEN, token)
    if device_id is None:
        return None
    return tx.read(PUSH_DEVICE_TOKENS, device_id)


def register_device(
    tx: Tx,
    user_id: int,
    token: str,
    platform: str,
    environment: str,
    bundle_id: str,
    allow_transfer: bool = True,
) -> DeviceRegistration:
    """Insert a token or refresh the existing record for it.

    Raises:
        InvalidRequestError: If the request fails validation.
        ForbiddenError: If the token belongs to another user and
            allow_transfer is False.
    """
    validate_registration(token, platform, environment, bundle_id)
    now = utcnow()

    existing = get_by_token(tx, token)
    if existing is not None:
        previous_user_id = existing.user_id if existing.user_id != user_id else None
        if previous_user_id is not None and not allow_transfer:
            raise ForbiddenError(
                ApiErrorCode.E_DEVICE_TOKEN_OWNED,
                "Device token is registered to another user",
            )

        existing.user_id = user_id
        existing.platform = platform
        existing.environment = environment
        existing.bundle_id = bundle_id
        existing.updated_at = now
        existing.active = True
        tx.write(PUSH_DEVICE_TOKENS, existing.id, existing)
        tx.set_target_single_term(PUSH_DEVICE_TOKEN_BY_USER, existing.id, user_id)

        if previous_user_id is not None:
            logger.warning(
                "device_token_transferred",
                device_id=existing.id,
                previous_user_id=previous_user_id,
                new_user_id=user_id,
            )
        return DeviceRegistration(existing, created=False, previous_user_id=previous_user_id)

    device = DeviceToken(
        id=tx.next_int_id(PUSH_DEVICE_TOKENS),
        user_id=user_id,
        token=token,
        platform=platform,
        environment=environment,
        bundle_id=bundle_id,
        created_at=now,
        updated_at=now,
        active=True,
    )
    tx.write(PUSH_DEVICE_TOKENS, device.id, device)
    tx.write(PUSH_DEVICE_TOKEN_BY_TOKEN, token, device.id)
    tx.set_target_single_term(PUSH_DEVICE_TOKEN_BY_USER, device.id, user_id)
    return DeviceRegistration(device, created=True)


def _deactivate(tx: Tx, device: DeviceToken) -> DeviceToken:
    device.active = False
    device.updated_at = utcnow()
    tx.write(PUSH_DEVICE_TOKENS, device.id, device)
    return device


def deactivate(tx: Tx, token: str, user_id: int | None = None) -> DeviceToken:
    """Soft-delete a token by its string.

    Args:
        token: Provider token string.
        user_id: When given, only that user's token may be deactivated.

    Raises:
        NotFoundError: If no record has this token (or it belongs to
            someone other than user_id).
    """
    device = get_by_token(tx, token)
    if device is None or (user_id is not None and device.user_id != user_id):
        raise NotFoundError(ApiErrorCode.E_DEVICE_TOKEN_NOT_FOUND, "Device token not found")
    return _deactivate(tx, device)


def deactivate_by_id(tx: Tx, device_id: int) -> DeviceToken:
    """Soft-delete a token by primary key.

    Raises:
        NotFoundError: If no record has this id.
    """
    device = get_by_id(tx, device_id)
    if device is None:
        raise NotFoundError(ApiErrorCode.E_DEVICE_TOKEN_NOT_FOUND, "Device token not found")
    return _deactivate(tx, device)


def tokens_for_user(tx: Tx, user_id: int) -> list[DeviceToken]:
    """Active device tokens registered to a user."""
    tokens = []
    for device_id in tx.read_term_targets(PUSH_DEVICE_TOKEN_BY_USER, user_id):
        device = tx.read(PUSH_DEVICE_TOKENS, device_id)
        if device is not None and device.active:
            tokens.append(device)
    return tokens
