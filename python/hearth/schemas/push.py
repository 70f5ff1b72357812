"""Push device registration schemas."""

from typing import Literal

from pydantic import BaseModel, Field


class RegisterDeviceRequest(BaseModel):
    """Request body for POST /api/push/devices."""

    token: str = Field(..., min_length=1, max_length=512)
    platform: Literal["ios", "android"]
    environment: Literal["sandbox", "production"] = "production"
    bundle_id: str = Field(..., min_length=1, max_length=255)


class UnregisterDeviceRequest(BaseModel):
    """Request body for DELETE /api/push/devices."""

    token: str = Field(..., min_length=1, max_length=512)
