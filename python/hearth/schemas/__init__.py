"""Pydantic request schemas for the HTTP API."""

from hearth.schemas.chat import SendMessageRequest
from hearth.schemas.push import RegisterDeviceRequest, UnregisterDeviceRequest

__all__ = ["RegisterDeviceRequest", "SendMessageRequest", "UnregisterDeviceRequest"]
