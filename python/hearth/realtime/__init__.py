"""Live chat connections: frames, per-connection loops, and the family registry."""

from hearth.realtime.connection import LiveConnection, Outbox
from hearth.realtime.registry import ConnectionRegistry

__all__ = ["ConnectionRegistry", "LiveConnection", "Outbox"]
