"""Chat WebSocket frame schemas and builders.

Every frame is a JSON object: {"type": ..., "payload": ..., "timestamp": ...}.

| type           | direction      | payload                                   |
|----------------|----------------|-------------------------------------------|
| new_message    | server->client | {message: ChatMessage}                    |
| delete_message | server->client | {message_id, user_id}                     |
| user_typing    | both           | {user_id, user_name, is_typing}           |
| user_online    | server->client | {user_id, user_name, is_online: true}     |
| user_offline   | server->client | {user_id, user_name, is_online: false}    |
| heartbeat      | both           | "ping" / "pong"                           |
| error          | server->client | "<message>"                               |
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError

from hearth.db.records import ChatMessage


class FrameType(str, Enum):
    """Frame type tags."""

    NEW_MESSAGE = "new_message"
    DELETE_MESSAGE = "delete_message"
    USER_TYPING = "user_typing"
    USER_ONLINE = "user_online"
    USER_OFFLINE = "user_offline"
    HEARTBEAT = "heartbeat"
    ERROR = "error"


class FrameError(ValueError):
    """An inbound frame could not be parsed."""


class InboundFrame(BaseModel):
    """Frame sent by a client. Unknown types are kept so they can be logged."""

    type: str
    payload: Any = None


class TypingPayload(BaseModel):
    """Client typing indicator. Sender identity comes from the connection."""

    is_typing: bool


def build_frame(frame_type: FrameType, payload: Any) -> str:
    """Serialize a frame to its JSON text form."""
    return json.dumps(
        {
            "type": frame_type.value,
            "payload": payload,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )


def parse_inbound(raw: str) -> InboundFrame:
    """Parse a client frame.

    Raises:
        FrameError: If the text is not a JSON object with a string type.
    """
    try:
        return InboundFrame.model_validate_json(raw)
    except ValidationError as e:
        raise FrameError(f"invalid frame: {e.error_count()} error(s)") from e


def parse_typing_payload(payload: Any) -> TypingPayload:
    """Validate a user_typing payload.

    Raises:
        FrameError: If is_typing is missing or not a boolean.
    """
    try:
        return TypingPayload.model_validate(payload)
    except ValidationError as e:
        raise FrameError("invalid typing payload") from e


def new_message_frame(message: ChatMessage) -> str:
    return build_frame(FrameType.NEW_MESSAGE, {"message": message.to_dict()})


def delete_message_frame(message_id: int, user_id: int) -> str:
    return build_frame(FrameType.DELETE_MESSAGE, {"message_id": message_id, "user_id": user_id})


def typing_frame(user_id: int, user_name: str, is_typing: bool) -> str:
    return build_frame(
        FrameType.USER_TYPING,
        {"user_id": user_id, "user_name": user_name, "is_typing": is_typing},
    )


def presence_frame(user_id: int, user_name: str, online: bool) -> str:
    frame_type = FrameType.USER_ONLINE if online else FrameType.USER_OFFLINE
    return build_frame(
        frame_type, {"user_id": user_id, "user_name": user_name, "is_online": online}
    )


def heartbeat_frame(payload: str) -> str:
    return build_frame(FrameType.HEARTBEAT, payload)


def error_frame(message: str) -> str:
    return build_frame(FrameType.ERROR, message)
