"""Per-family registry of live chat connections.

Provides:
- register / unregister with user_online / user_offline presence events
- broadcast(family_id, frame): non-blocking fan-out to every connection
- online_users / connection_count queries
- reap_stale / run_reaper: close connections that stopped talking

Ordering: a dispatch lock serializes register, unregister and broadcast, so
every connection in a family sees frames in the order broadcast() was
called. The map lock guards the family -> connections sets and is held
only for snapshots and mutations.

Backpressure: a connection whose outbox is full is dropped after the
broadcast loop (outbox closed, removed from its family) instead of
blocking the broadcaster. The client reconnects.
"""

import asyncio
import threading
import time

from hearth.logging import get_logger
from hearth.realtime.connection import OUTBOX_CAPACITY, LiveConnection
from hearth.realtime.frames import presence_frame

logger = get_logger(__name__)

REAPER_INTERVAL_S = 30.0
STALE_AFTER_S = 60.0


class ConnectionRegistry:
    """Live connections grouped by family.

    Args:
        outbox_capacity: Outbox size for connections created by connect().
    """

    def __init__(self, outbox_capacity: int = OUTBOX_CAPACITY):
        self.outbox_capacity = outbox_capacity
        self._families: dict[int, set[LiveConnection]] = {}
        self._map_lock = threading.RLock()
        self._dispatch_lock = threading.RLock()

    def connect(self, websocket, user_id: int, family_id: int, user_name: str) -> LiveConnection:
        """Create a connection bound to this registry and register it."""
        conn = LiveConnection(
            self, websocket, user_id, family_id, user_name, capacity=self.outbox_capacity
        )
        self.register(conn)
        return conn

    # =========================================================================
    # Membership
    # =========================================================================

    def register(self, conn: LiveConnection) -> None:
        """Add a connection; announce the user if it is their first one."""
        with self._dispatch_lock:
            with self._map_lock:
                conns = self._families.setdefault(conn.family_id, set())
                first_for_user = not any(c.user_id == conn.user_id for c in conns)
                conns.add(conn)
                count = len(conns)

            logger.info(
                "ws_client_registered",
                user_id=conn.user_id,
                family_id=conn.family_id,
                family_connections=count,
            )
            if first_for_user:
                self.broadcast(conn.family_id, presence_frame(conn.user_id, conn.user_name, True))

    def unregister(self, conn: LiveConnection) -> bool:
        """Remove a connection and close its outbox.

        Returns:
            True if the connection was registered.
        """
        with self._dispatch_lock:
            removed = self._remove(conn)
            if removed:
                logger.info(
                    "ws_client_unregistered", user_id=conn.user_id, family_id=conn.family_id
                )
            return removed

    def _remove(self, conn: LiveConnection) -> bool:
        with self._map_lock:
            conns = self._families.get(conn.family_id)
            if conns is None or conn not in conns:
                return False
            conns.discard(conn)
            last_for_user = not any(c.user_id == conn.user_id for c in conns)
            if not conns:
                del self._families[conn.family_id]

        conn.outbox.close()
        if last_for_user:
            self.broadcast(conn.family_id, presence_frame(conn.user_id, conn.user_name, False))
        return True

    # =========================================================================
    # Fan-out
    # =========================================================================

    def broadcast(self, family_id: int, frame: str) -> int:
        """Enqueue frame on every connection in the family without blocking.

        Returns:
            Number of connections the frame was delivered to.
        """
        with self._dispatch_lock:
            with self._map_lock:
                targets = list(self._families.get(family_id, ()))

            failed = [conn for conn in targets if not conn.enqueue(frame)]

            for conn in failed:
                logger.warning(
                    "ws_client_dropped_backpressure",
                    user_id=conn.user_id,
                    family_id=family_id,
                    capacity=conn.outbox.capacity,
                )
                self._remove(conn)

            return len(targets) - len(failed)

    # =========================================================================
    # Queries
    # =========================================================================

    def online_users(self, family_id: int) -> set[int]:
        """Distinct user ids with at least one live connection in the family."""
        with self._map_lock:
            return {c.user_id for c in self._families.get(family_id, ())}

    def connection_count(self, family_id: int) -> int:
        with self._map_lock:
            return len(self._families.get(family_id, ()))

    def all_connections(self) -> list[LiveConnection]:
        with self._map_lock:
            return [c for conns in self._families.values() for c in conns]

    def stats(self) -> dict:
        with self._map_lock:
            return {
                "families": len(self._families),
                "connections": sum(len(c) for c in self._families.values()),
            }

    # =========================================================================
    # Reaper
    # =========================================================================

    def reap_stale(self, now: float | None = None, stale_after: float = STALE_AFTER_S) -> int:
        """Close every connection not seen for more than stale_after seconds.

        Returns:
            Number of connections closed.
        """
        now = time.monotonic() if now is None else now
        stale = [c for c in self.all_connections() if now - c.last_seen > stale_after]
        for conn in stale:
            logger.info(
                "ws_client_stale",
                user_id=conn.user_id,
                family_id=conn.family_id,
                idle_seconds=int(now - conn.last_seen),
            )
            conn.close()
        return len(stale)

    async def run_reaper(self, interval: float = REAPER_INTERVAL_S) -> None:
        """Reap stale connections every interval seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(self.reap_stale)
            except Exception:
                logger.exception("ws_reaper_error")
