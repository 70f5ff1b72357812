"""Tests for the connection registry and connection outboxes.

Tests cover:
- Presence events on a user's first and last connection
- online_users matching live connections
- Broadcast ordering per connection
- Backpressure: full outboxes are dropped after the broadcast
- Reaping stale connections
- Registry work handed off the event loop thread
- Outbox semantics (bounded, close, drain)
"""

import asyncio
import json
import threading
import time

import pytest

from hearth.realtime.connection import OUTBOX_CAPACITY, LiveConnection, Outbox
from hearth.realtime.frames import FrameType, build_frame
from hearth.realtime.registry import ConnectionRegistry
from tests.helpers import frame_types, frames

FAMILY = 7


def _connect(registry: ConnectionRegistry, user_id: int, family_id: int = FAMILY) -> LiveConnection:
    """Register a connection that is not being served (no socket)."""
    return registry.connect(None, user_id, family_id, f"user-{user_id}")


def _chat_frame(n: int) -> str:
    return build_frame(FrameType.HEARTBEAT, f"frame-{n}")


class TestPresence:
    """Tests for user_online / user_offline events."""

    def test_first_connection_announces_online(self, registry: ConnectionRegistry):
        """Everyone in the family, including the new connection, sees user_online."""
        a = _connect(registry, 10)
        b = _connect(registry, 11)

        assert frame_types(a.outbox) == ["user_online", "user_online"]
        assert frame_types(b.outbox) == ["user_online"]
        online = frames(b.outbox)[0]["payload"]
        assert online == {"user_id": 11, "user_name": "user-11", "is_online": True}

    def test_second_connection_for_user_is_silent(self, registry: ConnectionRegistry):
        """A second tab for the same user does not re-announce them."""
        a = _connect(registry, 10)
        _connect(registry, 10)

        assert frame_types(a.outbox) == ["user_online"]

    def test_last_disconnect_announces_offline(self, registry: ConnectionRegistry):
        """user_offline is sent only when the user's last connection goes."""
        watcher = _connect(registry, 11)
        first = _connect(registry, 10)
        second = _connect(registry, 10)

        registry.unregister(first)
        assert "user_offline" not in frame_types(watcher.outbox)

        registry.unregister(second)
        offline = [f for f in frames(watcher.outbox) if f["type"] == "user_offline"]
        assert len(offline) == 1
        assert offline[0]["payload"]["user_id"] == 10
        assert offline[0]["payload"]["is_online"] is False

    def test_unregister_closes_outbox(self, registry: ConnectionRegistry):
        conn = _connect(registry, 10)

        assert registry.unregister(conn) is True
        assert conn.outbox.closed
        assert registry.unregister(conn) is False

    def test_online_users_matches_connections(self, registry: ConnectionRegistry):
        """online_users is the set of distinct user ids with live connections."""
        a1 = _connect(registry, 10)
        _connect(registry, 10)
        b = _connect(registry, 11)
        _connect(registry, 12, family_id=8)

        assert registry.online_users(FAMILY) == {10, 11}
        assert registry.connection_count(FAMILY) == 3

        registry.unregister(a1)
        assert registry.online_users(FAMILY) == {10, 11}

        registry.unregister(b)
        assert registry.online_users(FAMILY) == {10}
        assert registry.online_users(8) == {12}

    def test_empty_family_is_removed(self, registry: ConnectionRegistry):
        conn = _connect(registry, 10)
        registry.unregister(conn)

        assert registry.stats() == {"families": 0, "connections": 0}
        assert registry.online_users(FAMILY) == set()


class TestBroadcast:
    """Tests for fan-out."""

    def test_broadcast_reaches_only_the_family(self, registry: ConnectionRegistry):
        a = _connect(registry, 10)
        other = _connect(registry, 20, family_id=8)

        delivered = registry.broadcast(FAMILY, _chat_frame(1))

        assert delivered == 1
        assert frames(a.outbox)[-1]["payload"] == "frame-1"
        assert all(f["payload"] != "frame-1" for f in frames(other.outbox))

    def test_broadcast_to_empty_family(self, registry: ConnectionRegistry):
        assert registry.broadcast(99, _chat_frame(1)) == 0

    def test_order_matches_broadcast_order(self, registry: ConnectionRegistry):
        """Concurrent broadcasters produce the same order in every outbox."""
        conns = [_connect(registry, user_id) for user_id in (10, 11, 12)]
        for conn in conns:
            while conn.outbox.pending():
                conn.outbox._items.popleft()

        def broadcaster(start: int):
            for n in range(start, start + 50):
                registry.broadcast(FAMILY, _chat_frame(n))

        threads = [threading.Thread(target=broadcaster, args=(i * 50,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        sequences = [[f["payload"] for f in frames(c.outbox)] for c in conns]
        assert len(sequences[0]) == 200
        assert sequences[0] == sequences[1] == sequences[2]

    def test_full_outbox_is_dropped(self, registry: ConnectionRegistry):
        """A saturated connection is removed; the others still get the frame."""
        slow = _connect(registry, 10)
        fast = _connect(registry, 11)
        while slow.outbox.put_nowait(_chat_frame(0)):
            pass
        assert len(slow.outbox) == OUTBOX_CAPACITY

        delivered = registry.broadcast(FAMILY, _chat_frame(1))

        assert delivered == 1
        assert slow not in registry.all_connections()
        assert slow.outbox.closed
        assert fast in registry.all_connections()
        fast_payloads = [f["payload"] for f in frames(fast.outbox)]
        assert "frame-1" in fast_payloads
        # The dropped user had no other connection, so they went offline
        assert frame_types(fast.outbox)[-1] == "user_offline"
        assert registry.online_users(FAMILY) == {11}

    def test_broadcast_from_worker_thread(self, registry: ConnectionRegistry):
        """Broadcasting off the event loop thread is safe."""
        conn = _connect(registry, 10)
        thread = threading.Thread(target=registry.broadcast, args=(FAMILY, _chat_frame(7)))
        thread.start()
        thread.join(5)

        assert frames(conn.outbox)[-1]["payload"] == "frame-7"


class TestReaper:
    """Tests for stale connection reaping."""

    def test_reap_stale(self, registry: ConnectionRegistry):
        """Connections idle past the threshold are closed and removed."""
        stale = _connect(registry, 10)
        fresh = _connect(registry, 11)
        now = time.monotonic()
        stale.last_seen = now - 61
        fresh.last_seen = now - 5

        assert registry.reap_stale(now=now) == 1
        assert registry.all_connections() == [fresh]

    def test_touch_keeps_connection(self, registry: ConnectionRegistry):
        conn = _connect(registry, 10)
        conn.last_seen = time.monotonic() - 120
        conn.touch()

        assert registry.reap_stale() == 0

    @pytest.mark.asyncio
    async def test_run_reaper(self, registry: ConnectionRegistry):
        """The reaper task removes stale connections on its tick."""
        stale = _connect(registry, 10)
        stale.last_seen = time.monotonic() - 120

        task = asyncio.create_task(registry.run_reaper(interval=0.01))
        try:
            for _ in range(100):
                await asyncio.sleep(0.01)
                if not registry.all_connections():
                    break
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert registry.all_connections() == []


class TestEventLoopHandoff:
    """Registry locks are only taken off the event loop thread."""

    @pytest.mark.asyncio
    async def test_typing_broadcast_runs_in_a_worker_thread(
        self, registry: ConnectionRegistry, monkeypatch
    ):
        sender = _connect(registry, 10)
        peer = _connect(registry, 11)
        threads: list[int] = []
        real_broadcast = registry.broadcast

        def recording_broadcast(family_id: int, frame: str) -> int:
            threads.append(threading.get_ident())
            return real_broadcast(family_id, frame)

        monkeypatch.setattr(registry, "broadcast", recording_broadcast)

        assert await sender._dispatch(FrameType.USER_TYPING.value, {"is_typing": True})

        assert threads and threading.get_ident() not in threads
        assert frame_types(peer.outbox)[-1] == "user_typing"
        assert frames(peer.outbox)[-1]["payload"]["user_id"] == 10

    @pytest.mark.asyncio
    async def test_reaper_scans_in_a_worker_thread(
        self, registry: ConnectionRegistry, monkeypatch
    ):
        threads: list[int] = []

        def recording_reap() -> int:
            threads.append(threading.get_ident())
            return 0

        monkeypatch.setattr(registry, "reap_stale", recording_reap)
        task = asyncio.create_task(registry.run_reaper(interval=0.01))
        try:
            for _ in range(100):
                await asyncio.sleep(0.01)
                if threads:
                    break
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert threads and threading.get_ident() not in threads


class TestOutbox:
    """Tests for the bounded outbox."""

    def test_bounded(self):
        outbox = Outbox(capacity=2)
        assert outbox.put_nowait("a")
        assert outbox.put_nowait("b")
        assert not outbox.put_nowait("c")
        assert outbox.pending() == ["a", "b"]

    def test_closed_rejects(self):
        outbox = Outbox(capacity=2)
        outbox.close()
        assert not outbox.put_nowait("a")

    @pytest.mark.asyncio
    async def test_get_drains_then_reports_closed(self):
        """Frames queued before close are still delivered, then None."""
        outbox = Outbox(capacity=4)
        outbox.bind(asyncio.get_running_loop())
        outbox.put_nowait("a")
        outbox.close()

        assert await outbox.get() == "a"
        assert await outbox.get() is None

    @pytest.mark.asyncio
    async def test_get_wakes_on_cross_thread_put(self):
        """A put from another thread wakes a waiting consumer."""
        outbox = Outbox(capacity=4)
        outbox.bind(asyncio.get_running_loop())

        waiter = asyncio.create_task(outbox.get())
        await asyncio.sleep(0.01)
        threading.Thread(target=outbox.put_nowait, args=("hello",)).start()

        assert await asyncio.wait_for(waiter, 2) == "hello"

    def test_frames_are_json(self):
        frame = json.loads(build_frame(FrameType.ERROR, "bad"))
        assert set(frame) == {"type", "payload", "timestamp"}
        assert frame["type"] == "error"
