"""In-memory room store."""
import logging
from typing import Dict, Iterator, Optional

from .models import Room, RoomId

logger = logging.getLogger(__name__)


class RoomStore:
    """Maps room ids to Room aggregates.

    Room ids are caller-supplied; two clients naming the same id share the
    room. A stored room either has members or is waiting out its grace period.
    """

    def __init__(self) -> None:
        self._rooms: Dict[RoomId, Room] = {}

    def get(self, room_id: RoomId) -> Optional[Room]:
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: RoomId) -> Room:
        """Return the room, creating an empty one on first use."""
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(id=room_id)
            self._rooms[room_id] = room
            logger.info("[Store] Created room %s", room_id)
        return room

    def delete(self, room_id: RoomId) -> Optional[Room]:
        return self._rooms.pop(room_id, None)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))
