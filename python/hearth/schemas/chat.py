"""Chat request schemas.

Content length is checked after trimming by the chat service, so the
schema only caps the raw size.
"""

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    """Request body for POST /api/chat/messages."""

    content: str = Field(..., max_length=4000)
    client_message_id: str | None = Field(default=None, max_length=128)
