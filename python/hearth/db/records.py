"""Record types stored in the KV store, with their buckets and indexes.

Each record packs to a versioned byte string (see hearth.db.pack). Fields
added after a version shipped are appended and read only when bytes remain.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from hearth.db.pack import Packer, Unpacker
from hearth.db.store import INT_CODEC, STR_CODEC, Bucket, Codec, Index


def utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# =============================================================================
# Users
# =============================================================================


@dataclass
class User:
    """Family member account, as far as the pipelines need it."""

    id: int
    name: str
    email: str
    family_id: int
    created_at: datetime = field(default_factory=utcnow)
    last_login: datetime | None = None

    VERSION = 1

    def pack(self) -> bytes:
        p = Packer(self.VERSION)
        p.int(self.id).str(self.name).str(self.email).int(self.family_id).time(self.created_at)
        p.optional_time(self.last_login)
        return p.getvalue()

    @classmethod
    def unpack(cls, data: bytes) -> "User":
        u = Unpacker(data, "User", {1})
        user = cls(
            id=u.int(),
            name=u.str(),
            email=u.str(),
            family_id=u.int(),
            created_at=u.time(),
        )
        if u.remaining:
            user.last_login = u.optional_time()
        return user

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "family_id": self.family_id,
            "created_at": _iso(self.created_at),
            "last_login": _iso(self.last_login),
        }


# =============================================================================
# Media
# =============================================================================


class MediaStatus(IntEnum):
    """Processing status of an uploaded image.

    Pending records leave Pending exactly once, to Active or Failed.
    """

    ACTIVE = 0
    PENDING = 1
    FAILED = 2


@dataclass
class MediaRecord:
    """An uploaded photo and the state of its derived variants."""

    id: int
    family_id: int
    person_id: int
    owner_user_id: int
    original_filename: str
    mime_type: str
    file_size: int
    file_path: str
    width: int = 0
    height: int = 0
    title: str = ""
    description: str = ""
    photo_date: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    status: MediaStatus = MediaStatus.PENDING

    VERSION = 2

    def pack(self) -> bytes:
        p = Packer(self.VERSION)
        p.int(self.id).int(self.family_id).int(self.person_id).int(self.owner_user_id)
        p.str(self.original_filename).str(self.mime_type).int(self.file_size)
        p.int(self.width).int(self.height).str(self.file_path)
        p.str(self.title).str(self.description).optional_time(self.photo_date)
        p.time(self.created_at)
        p.int(int(self.status))
        return p.getvalue()

    @classmethod
    def unpack(cls, data: bytes) -> "MediaRecord":
        u = Unpacker(data, "MediaRecord", {2})
        record = cls(
            id=u.int(),
            family_id=u.int(),
            person_id=u.int(),
            owner_user_id=u.int(),
            original_filename=u.str(),
            mime_type=u.str(),
            file_size=u.int(),
            width=u.int(),
            height=u.int(),
            file_path=u.str(),
            title=u.str(),
            description=u.str(),
            photo_date=u.optional_time(),
            created_at=u.time(),
        )
        # Records written before background processing existed carry no
        # status; they were served directly and count as active.
        record.status = MediaStatus(u.int()) if u.remaining else MediaStatus.ACTIVE
        return record

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "family_id": self.family_id,
            "person_id": self.person_id,
            "owner_user_id": self.owner_user_id,
            "original_filename": self.original_filename,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "width": self.width,
            "height": self.height,
            "file_path": self.file_path,
            "title": self.title,
            "description": self.description,
            "photo_date": _iso(self.photo_date),
            "created_at": _iso(self.created_at),
            "status": self.status.name.lower(),
        }


# =============================================================================
# Chat
# =============================================================================


@dataclass
class ChatMessage:
    """A chat message posted to a family's shared channel."""

    id: int
    family_id: int
    user_id: int
    user_name: str
    content: str
    created_at: datetime = field(default_factory=utcnow)
    client_message_id: str = ""

    VERSION = 1

    def pack(self) -> bytes:
        p = Packer(self.VERSION)
        p.int(self.id).int(self.family_id).int(self.user_id).str(self.user_name)
        p.str(self.content).time(self.created_at)
        p.str(self.client_message_id)
        return p.getvalue()

    @classmethod
    def unpack(cls, data: bytes) -> "ChatMessage":
        u = Unpacker(data, "ChatMessage", {1})
        message = cls(
            id=u.int(),
            family_id=u.int(),
            user_id=u.int(),
            user_name=u.str(),
            content=u.str(),
            created_at=u.time(),
        )
        if u.remaining:
            message.client_message_id = u.str()
        return message

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "family_id": self.family_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "content": self.content,
            "created_at": _iso(self.created_at),
            "client_message_id": self.client_message_id,
        }


# =============================================================================
# Push device tokens
# =============================================================================


@dataclass
class DeviceToken:
    """A push provider device token registered by a user."""

    id: int
    user_id: int
    token: str
    platform: str
    environment: str
    bundle_id: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    active: bool = True

    VERSION = 1

    def pack(self) -> bytes:
        p = Packer(self.VERSION)
        p.int(self.id).int(self.user_id).str(self.token).str(self.platform)
        p.str(self.environment).str(self.bundle_id)
        p.time(self.created_at).time(self.updated_at).bool(self.active)
        return p.getvalue()

    @classmethod
    def unpack(cls, data: bytes) -> "DeviceToken":
        u = Unpacker(data, "DeviceToken", {1})
        return cls(
            id=u.int(),
            user_id=u.int(),
            token=u.str(),
            platform=u.str(),
            environment=u.str(),
            bundle_id=u.str(),
            created_at=u.time(),
            updated_at=u.time(),
            active=u.bool(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "platform": self.platform,
            "environment": self.environment,
            "bundle_id": self.bundle_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "active": self.active,
        }


# =============================================================================
# Buckets and indexes
# =============================================================================


def _record_codec(cls) -> Codec:
    return Codec(lambda record: record.pack(), cls.unpack)


USERS: Bucket[int, User] = Bucket("users", INT_CODEC, _record_codec(User))
USERS_BY_FAMILY: Index[int, int] = Index("users_by_family", INT_CODEC, INT_CODEC)

IMAGES: Bucket[int, MediaRecord] = Bucket("images", INT_CODEC, _record_codec(MediaRecord))
IMAGE_BY_FAMILY: Index[int, int] = Index("image_by_family", INT_CODEC, INT_CODEC)
IMAGE_BY_PERSON: Index[int, int] = Index("image_by_person", INT_CODEC, INT_CODEC)

CHAT_MESSAGES: Bucket[int, ChatMessage] = Bucket(
    "chat_messages", INT_CODEC, _record_codec(ChatMessage)
)
CHAT_MESSAGES_BY_FAMILY: Index[int, int] = Index("chat_messages_by_family", INT_CODEC, INT_CODEC)
CHAT_MESSAGES_BY_USER: Index[int, int] = Index("chat_messages_by_user", INT_CODEC, INT_CODEC)

PUSH_DEVICE_TOKENS: Bucket[int, DeviceToken] = Bucket(
    "push_device_tokens", INT_CODEC, _record_codec(DeviceToken)
)
PUSH_DEVICE_TOKEN_BY_TOKEN: Bucket[str, int] = Bucket(
    "push_device_token_by_token", STR_CODEC, INT_CODEC
)
PUSH_DEVICE_TOKEN_BY_USER: Index[int, int] = Index(
    "push_device_token_by_user", INT_CODEC, INT_CODEC
)
