"""Relay service: the join, message and departure protocols.

``RelayService`` owns all room and connection state for one server
process. It is created explicitly (see ``roomrelay.main.create_app``) and
handed to the WebSocket router, so tests can build isolated instances.

Protocol operations are synchronous. They mutate state and hand outbound
events to the transport without awaiting, so each operation runs to
completion on the event loop before any other handler sees the rooms. The
only asynchronous re-entry into room state is the eviction task.

Failure model:
    - Lookup misses (unknown room or connection) are silent and reported
      as ``Outcome.IGNORED``.
    - ``RelayError`` failures are logged, reported to the originating
      connection with a generic ``error`` event, and returned as
      ``Outcome.FAILED``. They never reach other connections.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError

from .errors import DeliveryError, InvalidPayloadError, RelayError
from .eviction import DEFAULT_GRACE_PERIOD_SECONDS, EvictionScheduler
from .models import (
    DEFAULT_SNAPSHOT_LIMIT,
    Member,
    Message,
    MessageIdFactory,
    MessageUser,
    RoomId,
    RoomState,
    UserProfile,
    utc_now,
)
from .registry import ConnectionRegistry
from .store import RoomStore
from .transport import Transport

logger = logging.getLogger(__name__)

# Inbound event types
JOIN_ROOM = "joinRoom"
SEND_MESSAGE = "sendMessage"

# Outbound event types
USER_JOINED = "userJoined"
ROOM_DATA = "roomData"
NEW_MESSAGE = "newMessage"
USER_LEFT = "userLeft"
ERROR = "error"

JOIN_FAILED = "Failed to join room"
SEND_FAILED = "Failed to send message"


class Outcome(str, Enum):
    OK = "ok"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class OperationResult:
    """Result of one protocol operation.

    Attributes:
        outcome: OK, IGNORED (lookup miss) or FAILED.
        room_id: Room the operation targeted, when known.
        error: The failure, for FAILED results.
        message: The stored message, for successful sends.
    """
    outcome: Outcome
    room_id: Optional[RoomId] = None
    error: Optional[RelayError] = None
    message: Optional[Message] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


def _parse(model: type, data: Any, what: str) -> BaseModel:
    try:
        return data if isinstance(data, model) else model.model_validate(data)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid {what}: {e.error_count()} error(s)") from e


def _require_room_id(room_id: Any) -> RoomId:
    # bool is an int subclass and would share a room with 1 or 0
    if isinstance(room_id, bool) or not isinstance(room_id, (str, int, float)):
        raise InvalidPayloadError("roomId must be a string or a number")
    return room_id


class RelayService:
    """Owns the room store and connection registry and runs the protocols."""

    def __init__(
        self,
        transport: Transport,
        *,
        store: Optional[RoomStore] = None,
        registry: Optional[ConnectionRegistry] = None,
        grace_period_seconds: float = DEFAULT_GRACE_PERIOD_SECONDS,
        snapshot_limit: int = DEFAULT_SNAPSHOT_LIMIT,
        clock: Callable[[], datetime] = utc_now,
        message_ids: Optional[Callable[[], str]] = None,
    ) -> None:
        self.transport = transport
        self.store = store if store is not None else RoomStore()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.evictions = EvictionScheduler(self.store, grace_period_seconds)
        self.snapshot_limit = snapshot_limit
        self._clock = clock
        self._next_message_id = message_ids or MessageIdFactory()

    # =========================================================================
    # Inbound dispatch
    # =========================================================================

    def dispatch(self, connection_id: str, frame: Any) -> OperationResult:
        """Route one inbound frame to its protocol operation.

        Frames that are not objects or carry an unknown ``type`` are ignored.
        """
        if not isinstance(frame, dict):
            logger.debug(f"[Relay] Ignoring non-object frame from {connection_id}")
            return OperationResult(Outcome.IGNORED)

        event = frame.get("type")
        if event == JOIN_ROOM:
            return self.join(connection_id, frame.get("roomId"), frame.get("user"))
        if event == SEND_MESSAGE:
            body = frame.get("message")
            text = body.get("text") if isinstance(body, dict) else None
            return self.send_message(
                connection_id, frame.get("roomId"), text, frame.get("user")
            )

        logger.debug(f"[Relay] Ignoring unknown event {event!r} from {connection_id}")
        return OperationResult(Outcome.IGNORED)

    # =========================================================================
    # Join
    # =========================================================================

    def join(self, connection_id: str, room_id: Any, profile: Any) -> OperationResult:
        """Admit a connection into a room, creating the room on first use.

        Rejoining the same room with the same connection overwrites the
        member record. Joining a different room first moves the connection
        out of the room it was in.

        Emits ``userJoined`` to the other members and ``roomData`` (members
        plus the most recent messages) to the joiner.
        """
        try:
            room_id = _require_room_id(room_id)
            profile = _parse(UserProfile, profile, "user profile")
            return self._join(connection_id, room_id, profile)
        except RelayError as e:
            logger.warning(f"[Relay] Join of {connection_id} to room {room_id!r} failed: {e}")
            return self._fail(connection_id, room_id, e, JOIN_FAILED)

    def _join(self, connection_id: str, room_id: RoomId, profile: UserProfile) -> OperationResult:
        self.transport.subscribe(connection_id, room_id)

        previous = self.registry.get(connection_id)
        if previous is not None and previous.room_id != room_id:
            logger.info(
                f"[Relay] {connection_id} switching from room {previous.room_id} to {room_id}"
            )
            self._vacate(connection_id, previous.room_id)

        room = self.store.get_or_create(room_id)
        self.evictions.cancel(room_id)

        if connection_id in room.members:
            logger.debug(f"[Relay] {connection_id} rejoined room {room_id}, replacing member")
        member = Member.from_profile(connection_id, profile, joined_at=self._clock())
        room.members[connection_id] = member
        self.registry.put(connection_id, profile, room_id)

        users = room.users()
        self.transport.broadcast(
            room_id,
            USER_JOINED,
            {"user": member.model_dump(mode="json"), "users": users},
            exclude=connection_id,
        )
        self.transport.send(
            connection_id, ROOM_DATA, {"room": room.snapshot(self.snapshot_limit)}
        )
        logger.info(f"[Relay] User {profile.name} joined room {room_id} ({len(users)} members)")
        return OperationResult(Outcome.OK, room_id=room_id)

    # =========================================================================
    # Messages
    # =========================================================================

    def send_message(
        self, connection_id: str, room_id: Any, text: Any, user: Any
    ) -> OperationResult:
        """Append a chat message to a room and broadcast it to every member.

        The sender receives its own message too. Messages for rooms the
        server does not know are dropped without an error.
        """
        try:
            room_id = _require_room_id(room_id)
            if not isinstance(text, str):
                raise InvalidPayloadError("message.text must be a string")
            sender = _parse(MessageUser, user, "message user")

            room = self.store.get(room_id)
            if room is None:
                logger.debug(f"[Relay] Dropping message for unknown room {room_id}")
                return OperationResult(Outcome.IGNORED, room_id=room_id)

            message = Message(
                id=self._next_message_id(),
                text=text,
                user=sender,
                timestamp=self._clock(),
            )
            room.messages.append(message)
            self.transport.broadcast(room_id, NEW_MESSAGE, message.model_dump(mode="json"))
            return OperationResult(Outcome.OK, room_id=room_id, message=message)
        except RelayError as e:
            logger.warning(f"[Relay] Message from {connection_id} to room {room_id!r} failed: {e}")
            return self._fail(connection_id, room_id, e, SEND_FAILED)

    # =========================================================================
    # Departure
    # =========================================================================

    def depart(self, connection_id: str) -> OperationResult:
        """Handle connection loss.

        Removes the member from its room, tells the remaining members, and
        schedules eviction when the room is left empty. The registry entry
        is removed even if the room is already gone.
        """
        entry = self.registry.get(connection_id)
        if entry is None:
            self.transport.release(connection_id)
            return OperationResult(Outcome.IGNORED)
        try:
            self._vacate(connection_id, entry.room_id)
        finally:
            self.registry.remove(connection_id)
        logger.info(f"[Relay] {connection_id} left room {entry.room_id}")
        return OperationResult(Outcome.OK, room_id=entry.room_id)

    def _vacate(self, connection_id: str, room_id: RoomId) -> None:
        self.transport.unsubscribe(connection_id, room_id)
        room = self.store.get(room_id)
        if room is None:
            return
        room.members.pop(connection_id, None)
        if room.members:
            self.transport.broadcast(
                room_id, USER_LEFT, {"userId": connection_id, "users": room.users()}
            )
        else:
            self.evictions.schedule(room_id)

    # =========================================================================
    # Queries
    # =========================================================================

    def room_state(self, room_id: RoomId) -> Optional[RoomState]:
        """Lifecycle state of a stored room, or None if it does not exist."""
        room = self.store.get(room_id)
        if room is None:
            return None
        if room.members:
            return RoomState.ACTIVE
        if self.evictions.is_pending(room_id):
            return RoomState.EMPTY_PENDING
        return RoomState.EMPTY

    def room_exists(self, room_id: RoomId) -> bool:
        return room_id in self.store

    def room_count(self) -> int:
        return len(self.store)

    def connection_count(self) -> int:
        return len(self.registry)

    def shutdown(self) -> None:
        self.evictions.cancel_all()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _fail(
        self, connection_id: str, room_id: Any, error: RelayError, client_message: str
    ) -> OperationResult:
        try:
            self.transport.send(connection_id, ERROR, {"message": client_message})
        except DeliveryError as e:
            logger.debug(f"[Relay] Could not report failure to {connection_id}: {e}")
        return OperationResult(
            Outcome.FAILED,
            room_id=room_id if isinstance(room_id, (str, int, float)) else None,
            error=error,
        )
