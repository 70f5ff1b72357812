"""A single live chat WebSocket and its read/write loops.

Each connection owns a bounded outbox of text frames. Broadcasters only
ever call put_nowait() on it; the write loop is the only consumer. The
outbox may be filled from worker threads, so wakeups are handed to the
connection's event loop with call_soon_threadsafe.

Timeouts:
- READ_TIMEOUT_S: no client frame for this long ends the connection
- WRITE_TIMEOUT_S: a single frame write that takes longer ends the connection
- PING_INTERVAL_S: idle time after which the server sends a heartbeat ping
"""

import asyncio
import threading
import time
from collections import deque
from typing import TYPE_CHECKING

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from hearth.logging import get_logger
from hearth.realtime.frames import (
    FrameError,
    FrameType,
    error_frame,
    heartbeat_frame,
    parse_inbound,
    parse_typing_payload,
    typing_frame,
)

if TYPE_CHECKING:
    from hearth.realtime.registry import ConnectionRegistry

logger = get_logger(__name__)

OUTBOX_CAPACITY = 256
READ_TIMEOUT_S = 60.0
WRITE_TIMEOUT_S = 10.0
PING_INTERVAL_S = 54.0
HEARTBEAT_REPLY_TIMEOUT_S = 5.0


class Outbox:
    """Bounded FIFO of outbound frames with a non-blocking producer side.

    Args:
        capacity: Maximum buffered frames.
    """

    def __init__(self, capacity: int = OUTBOX_CAPACITY):
        self.capacity = capacity
        self._items: deque[str] = deque()
        self._lock = threading.Lock()
        self._closed = False
        self._ready = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the event loop the consumer runs on."""
        self._loop = loop

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def put_nowait(self, frame: str) -> bool:
        """Append a frame. Returns False if the outbox is full or closed."""
        with self._lock:
            if self._closed or len(self._items) >= self.capacity:
                return False
            self._items.append(frame)
        self._wake()
        return True

    def close(self) -> None:
        """Stop accepting frames. The consumer sees None once drained."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._wake()

    def pending(self) -> list[str]:
        """Copy of the buffered frames, oldest first."""
        with self._lock:
            return list(self._items)

    async def get(self) -> str | None:
        """Wait for the next frame; None means closed and drained."""
        while True:
            with self._lock:
                if self._items:
                    return self._items.popleft()
                if self._closed:
                    return None
                self._ready.clear()
            await self._ready.wait()

    def _wake(self) -> None:
        loop = self._loop
        if loop is None:
            self._ready.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._ready.set()
            return
        try:
            loop.call_soon_threadsafe(self._ready.set)
        except RuntimeError:
            # Loop already closed; nobody is left to read
            pass


class LiveConnection:
    """An authenticated chat WebSocket registered with a ConnectionRegistry.

    Args:
        registry: The registry this connection belongs to.
        websocket: The accepted Starlette WebSocket.
        user_id: Authenticated user.
        family_id: The user's family (tenant).
        user_name: Display name used in presence and typing frames.
        capacity: Outbox capacity.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        websocket: WebSocket | None,
        user_id: int,
        family_id: int,
        user_name: str,
        capacity: int = OUTBOX_CAPACITY,
    ):
        self.registry = registry
        self.websocket = websocket
        self.user_id = user_id
        self.family_id = family_id
        self.user_name = user_name
        self.outbox = Outbox(capacity)
        self.last_seen = time.monotonic()
        self._tasks: list[asyncio.Task] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"LiveConnection(user_id={self.user_id}, family_id={self.family_id})"

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def enqueue(self, frame: str) -> bool:
        """Non-blocking send used by broadcasters."""
        return self.outbox.put_nowait(frame)

    def close(self) -> None:
        """Cancel both loops; the serve() cleanup unregisters the connection.

        A connection that is not being served is unregistered directly.
        """
        if not self._tasks:
            self.registry.unregister(self)
            return
        for task in self._tasks:
            if self._loop is None or _in_loop(self._loop):
                task.cancel()
            else:
                self._loop.call_soon_threadsafe(task.cancel)

    # =========================================================================
    # Serving
    # =========================================================================

    async def serve(self) -> None:
        """Run the read and write loops until either ends, then clean up."""
        self._loop = asyncio.get_running_loop()
        self.outbox.bind(self._loop)
        reader = asyncio.create_task(self._read_loop(), name=f"ws-read-{self.user_id}")
        writer = asyncio.create_task(self._write_loop(), name=f"ws-write-{self.user_id}")
        self._tasks = [reader, writer]
        try:
            await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            await asyncio.to_thread(self.registry.unregister, self)
            await self._close_socket()

    async def send_text(self, text: str, timeout: float = WRITE_TIMEOUT_S) -> None:
        """Write one frame to the socket, serialized with other writers."""
        async with self._send_lock:
            await asyncio.wait_for(self.websocket.send_text(text), timeout)

    async def _close_socket(self) -> None:
        if self.websocket is None:
            return
        if WebSocketState.DISCONNECTED in (
            self.websocket.application_state,
            self.websocket.client_state,
        ):
            return
        try:
            await asyncio.wait_for(self.websocket.close(code=1000), WRITE_TIMEOUT_S)
        except Exception as e:
            logger.debug("ws_close_failed", error=str(e))

    async def _read_loop(self) -> None:
        while True:
            try:
                raw = await asyncio.wait_for(self.websocket.receive_text(), READ_TIMEOUT_S)
            except asyncio.TimeoutError:
                logger.info("ws_read_timeout", user_id=self.user_id, family_id=self.family_id)
                return
            except WebSocketDisconnect:
                logger.debug("ws_client_disconnected", user_id=self.user_id)
                return
            except (KeyError, RuntimeError) as e:
                logger.warning("ws_read_failed", user_id=self.user_id, error=str(e))
                return

            self.touch()

            try:
                frame = parse_inbound(raw)
            except FrameError as e:
                logger.warning("ws_invalid_frame", user_id=self.user_id, error=str(e))
                return

            if not await self._dispatch(frame.type, frame.payload):
                return

    async def _dispatch(self, frame_type: str, payload) -> bool:
        """Handle one client frame. Returns False to end the connection."""
        if frame_type == FrameType.USER_TYPING.value:
            try:
                typing = parse_typing_payload(payload)
            except FrameError:
                logger.warning("ws_invalid_typing_payload", user_id=self.user_id)
                self.enqueue(error_frame("invalid typing payload"))
                return True
            frame = typing_frame(self.user_id, self.user_name, typing.is_typing)
            await asyncio.to_thread(self.registry.broadcast, self.family_id, frame)
            return True

        if frame_type == FrameType.HEARTBEAT.value:
            try:
                await self.send_text(heartbeat_frame("pong"), HEARTBEAT_REPLY_TIMEOUT_S)
            except Exception as e:
                logger.warning("ws_heartbeat_reply_failed", user_id=self.user_id, error=str(e))
                return False
            return True

        logger.info("ws_unknown_frame_type", user_id=self.user_id, frame_type=frame_type)
        return True

    async def _write_loop(self) -> None:
        while True:
            try:
                frame = await asyncio.wait_for(self.outbox.get(), PING_INTERVAL_S)
            except asyncio.TimeoutError:
                frame = heartbeat_frame("ping")
                try:
                    await self.send_text(frame)
                except Exception as e:
                    logger.info("ws_ping_failed", user_id=self.user_id, error=str(e))
                    return
                continue

            if frame is None:
                return

            try:
                await self.send_text(frame)
            except Exception as e:
                logger.info("ws_write_failed", user_id=self.user_id, error=str(e))
                return


def _in_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
