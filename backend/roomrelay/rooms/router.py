"""Rooms router providing the WebSocket relay endpoint and room lookup.

This module provides:
    - WebSocket /ws: Real-time presence and chat relay
    - GET /rooms/{room_id}: Room existence and membership

Protocol Flow (every frame is a JSON object with a ``type`` field):
    1. Client connects → Server assigns a connection id
       → Server sends: {type: "connected", connectionId}
    2. Client sends: {type: "joinRoom", roomId, user: {name, role}}
       → Others in room get: {type: "userJoined", user, users}
       → Joiner gets: {type: "roomData", room: {id, users, messages, ...}}
    3. Client sends: {type: "sendMessage", roomId, message: {text}, user: {id, name, role}}
       → Whole room gets: {type: "newMessage", id, text, user, timestamp}
    4. On disconnect → Remaining members get: {type: "userLeft", userId, users}

Failures are reported to the sender only as {type: "error", message}.
"""
import json
import logging
import uuid

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from .service import RelayService
from .transport import WebSocketTransport

logger = logging.getLogger(__name__)

router = APIRouter()

CONNECTED = "connected"


@router.get("/rooms/{room_id}")
async def get_room(room_id: str, request: Request) -> JSONResponse:
    """Describe a stored room.

    Returns:
        JSON with id, state, users and messageCount, or 404 when the room
        does not exist (never created, or evicted after its grace period).
    """
    relay: RelayService = request.app.state.relay
    room = relay.store.get(room_id)
    if room is None:
        return JSONResponse({"error": "Room not found"}, status_code=404)
    return JSONResponse({
        "id": room.id,
        "state": relay.room_state(room_id).value,
        "users": room.users(),
        "messageCount": len(room.messages),
    })


@router.websocket("/ws")
async def relay_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for one client connection.

    Inbound frames are dispatched to the relay service one at a time.
    Outbound frames are written by a sender task draining the connection's
    outbox, so a slow client never holds up the relay.
    """
    relay: RelayService = websocket.app.state.relay
    transport: WebSocketTransport = relay.transport

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    sender = transport.open(connection_id, websocket)
    logger.info(f"[WS] New client connected: {connection_id}")

    transport.send(connection_id, CONNECTED, {"connectionId": connection_id})

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.debug(f"[WS] Ignoring binary frame from {connection_id}")
                continue
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug(f"[WS] Ignoring non-JSON frame from {connection_id}")
                continue
            relay.dispatch(connection_id, frame)

    except WebSocketDisconnect:
        logger.info(f"[WS] Client disconnected: {connection_id}")
    except Exception:
        logger.exception(f"[WS] Unexpected error on connection {connection_id}")
    finally:
        try:
            relay.depart(connection_id)
        except Exception:
            logger.exception(f"[WS] Cleanup failed for connection {connection_id}")
        transport.close(connection_id)
        await sender
