"""Event delivery for the relay.

The relay core only needs four primitives: put a connection in a room's
broadcast group, take it out, send an event to one connection, and send an
event to every connection in a group. ``Transport`` is that contract;
``WebSocketTransport`` implements it on top of FastAPI WebSockets.

Usage:
    transport = WebSocketTransport()
    sender = transport.open(connection_id, websocket)
    transport.send(connection_id, "connected", {"connectionId": connection_id})

Delivery is non-blocking: outbound frames go into a per-connection FIFO
outbox that a dedicated sender task drains. A relay operation therefore
never awaits a slow client, and every connection sees frames in the order
the server produced them. Outboxes are bounded, and a client that falls
behind by more than the bound is disconnected.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional, Set

from fastapi import WebSocket

from .errors import DeliveryError
from .models import RoomId

logger = logging.getLogger(__name__)


def make_frame(event: str, payload: dict) -> dict:
    """Build the JSON frame for an event: ``{"type": event, **payload}``."""
    return {"type": event, **payload}


class Transport(ABC):
    """Abstract delivery primitive consumed by the relay service.

    Implementations must deliver frames to each connection in the order
    the calls were made, and must not block the caller.
    """

    @abstractmethod
    def subscribe(self, connection_id: str, room_id: RoomId) -> None:
        """Add a connection to a room's broadcast group.

        Raises:
            DeliveryError: If the connection is not open.
        """

    @abstractmethod
    def unsubscribe(self, connection_id: str, room_id: RoomId) -> None:
        """Remove a connection from a room's broadcast group (no-op on miss)."""

    @abstractmethod
    def send(self, connection_id: str, event: str, payload: dict) -> None:
        """Deliver an event to one connection.

        Raises:
            DeliveryError: If the connection is not open.
        """

    @abstractmethod
    def broadcast(
        self, room_id: RoomId, event: str, payload: dict, exclude: Optional[str] = None
    ) -> None:
        """Deliver an event to every connection in a room's group."""

    @abstractmethod
    def release(self, connection_id: str) -> None:
        """Drop every group subscription held by a connection."""


_CLOSE = None  # outbox sentinel: stop the sender task

# Frames a connection may have waiting before it is dropped as too slow
DEFAULT_OUTBOX_LIMIT = 256

# Policy violation: the client stopped reading its frames
SLOW_CONSUMER_CLOSE_CODE = 1008


class WebSocketTransport(Transport):
    """Transport backed by FastAPI WebSockets with per-connection outboxes.

    Each outbox holds at most ``outbox_limit`` frames. A connection whose
    outbox overflows, or whose socket fails a write, is dropped: its outbox
    is discarded and the socket is closed, so the endpoint's receive loop
    ends and the normal departure runs.

    Thread Safety:
        Designed for a single event loop. It is NOT thread-safe.
    """

    def __init__(self, outbox_limit: int = DEFAULT_OUTBOX_LIMIT) -> None:
        if outbox_limit < 1:
            raise ValueError("outbox_limit must be >= 1")
        self.outbox_limit = outbox_limit
        # connection_id -> ordered queue of frames awaiting delivery
        self._outboxes: Dict[str, asyncio.Queue] = {}
        self._sockets: Dict[str, WebSocket] = {}
        # room_id -> connection ids subscribed to it
        self._groups: Dict[RoomId, Set[str]] = {}
        # connection_id -> room ids it is subscribed to
        self._subscriptions: Dict[str, Set[RoomId]] = {}
        self._closing: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def open(self, connection_id: str, websocket: WebSocket) -> asyncio.Task:
        """Register a connection and start its sender task.

        Must be called from within a running event loop. The returned task
        finishes after ``close()`` once every queued frame has been written,
        or as soon as the connection is dropped.
        """
        outbox: asyncio.Queue = asyncio.Queue(maxsize=self.outbox_limit)
        self._outboxes[connection_id] = outbox
        self._sockets[connection_id] = websocket
        self._subscriptions[connection_id] = set()
        return asyncio.get_running_loop().create_task(
            self._pump(connection_id, outbox, websocket), name=f"ws-sender-{connection_id}"
        )

    def close(self, connection_id: str) -> None:
        """Release the connection and stop its sender once the outbox drains."""
        self.release(connection_id)
        self._subscriptions.pop(connection_id, None)
        self._sockets.pop(connection_id, None)
        outbox = self._outboxes.pop(connection_id, None)
        if outbox is not None:
            _stop(outbox)

    def is_open(self, connection_id: str) -> bool:
        return connection_id in self._outboxes

    def group(self, room_id: RoomId) -> Set[str]:
        return set(self._groups.get(room_id, ()))

    async def _pump(
        self, connection_id: str, outbox: asyncio.Queue, websocket: WebSocket
    ) -> None:
        while True:
            frame = await outbox.get()
            if frame is _CLOSE:
                return
            try:
                await websocket.send_json(frame)
            except Exception as e:
                logger.debug(f"[WS] Failed to send to connection {connection_id}: {e}")
                if self._outboxes.get(connection_id) is outbox:
                    self._drop(connection_id, "send failed")
                return

    def _drop(self, connection_id: str, reason: str) -> None:
        """Stop delivering to a connection and close its socket."""
        outbox = self._outboxes.pop(connection_id, None)
        websocket = self._sockets.pop(connection_id, None)
        if outbox is None:
            return
        logger.warning(f"[WS] Dropping connection {connection_id}: {reason}")
        _discard_pending(outbox)
        _stop(outbox)
        if websocket is not None:
            task = asyncio.get_running_loop().create_task(
                self._close_socket(connection_id, websocket)
            )
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def _close_socket(self, connection_id: str, websocket: WebSocket) -> None:
        try:
            await websocket.close(code=SLOW_CONSUMER_CLOSE_CODE)
        except Exception as e:
            logger.debug(f"[WS] Close of connection {connection_id} failed: {e}")

    def _enqueue(self, connection_id: str, outbox: asyncio.Queue, frame: dict) -> None:
        try:
            outbox.put_nowait(frame)
        except asyncio.QueueFull:
            self._drop(connection_id, f"outbox full ({self.outbox_limit} frames)")

    # -------------------------------------------------------------------------
    # Transport contract
    # -------------------------------------------------------------------------

    def subscribe(self, connection_id: str, room_id: RoomId) -> None:
        subscriptions = self._subscriptions.get(connection_id)
        if subscriptions is None:
            raise DeliveryError(connection_id)
        subscriptions.add(room_id)
        self._groups.setdefault(room_id, set()).add(connection_id)

    def unsubscribe(self, connection_id: str, room_id: RoomId) -> None:
        subscriptions = self._subscriptions.get(connection_id)
        if subscriptions is not None:
            subscriptions.discard(room_id)
        members = self._groups.get(room_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._groups[room_id]

    def send(self, connection_id: str, event: str, payload: dict) -> None:
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            raise DeliveryError(connection_id)
        self._enqueue(connection_id, outbox, make_frame(event, payload))

    def broadcast(
        self, room_id: RoomId, event: str, payload: dict, exclude: Optional[str] = None
    ) -> None:
        frame = make_frame(event, payload)
        for connection_id in self._recipients(room_id, exclude):
            # Every recipient gets the same frame object; frames are never mutated
            self._enqueue(connection_id, self._outboxes[connection_id], frame)

    def release(self, connection_id: str) -> None:
        for room_id in list(self._subscriptions.get(connection_id, ())):
            self.unsubscribe(connection_id, room_id)

    def _recipients(self, room_id: RoomId, exclude: Optional[str]) -> Iterable[str]:
        return [
            cid for cid in self._groups.get(room_id, ())
            if cid != exclude and cid in self._outboxes
        ]


def _discard_pending(outbox: asyncio.Queue) -> None:
    while not outbox.empty():
        outbox.get_nowait()


def _stop(outbox: asyncio.Queue) -> None:
    # Only a stalled client has a full outbox; its backlog is not delivered
    if outbox.full():
        _discard_pending(outbox)
    outbox.put_nowait(_CLOSE)
