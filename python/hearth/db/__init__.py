"""Database module for Hearth.

Provides the embedded key-value store (buckets, indexes, transactions),
the packed record codec, and the record types kept in it.
"""

from hearth.db.engine import create_db_engine
from hearth.db.pack import PackError, PackVersionError
from hearth.db.records import (
    CHAT_MESSAGES,
    CHAT_MESSAGES_BY_FAMILY,
    CHAT_MESSAGES_BY_USER,
    IMAGE_BY_FAMILY,
    IMAGE_BY_PERSON,
    IMAGES,
    PUSH_DEVICE_TOKEN_BY_TOKEN,
    PUSH_DEVICE_TOKEN_BY_USER,
    PUSH_DEVICE_TOKENS,
    USERS,
    USERS_BY_FAMILY,
    ChatMessage,
    DeviceToken,
    MediaRecord,
    MediaStatus,
    User,
)
from hearth.db.store import Bucket, Index, Store, Tx, Window

__all__ = [
    # Store
    "create_db_engine",
    "Store",
    "Tx",
    "Bucket",
    "Index",
    "Window",
    "PackError",
    "PackVersionError",
    # Records
    "User",
    "MediaRecord",
    "MediaStatus",
    "ChatMessage",
    "DeviceToken",
    # Buckets and indexes
    "USERS",
    "USERS_BY_FAMILY",
    "IMAGES",
    "IMAGE_BY_FAMILY",
    "IMAGE_BY_PERSON",
    "CHAT_MESSAGES",
    "CHAT_MESSAGES_BY_FAMILY",
    "CHAT_MESSAGES_BY_USER",
    "PUSH_DEVICE_TOKENS",
    "PUSH_DEVICE_TOKEN_BY_TOKEN",
    "PUSH_DEVICE_TOKEN_BY_USER",
]
