"""Connection registry: which room each live connection is bound to."""
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from .models import RoomId, UserProfile


@dataclass
class RegistryEntry:
    connection_id: str
    room_id: RoomId
    profile: UserProfile


class ConnectionRegistry:
    """Maps a connection id to its profile and current room.

    This is the only place the room of a connection can be recovered from
    once the join payload is gone (e.g. on disconnect). A miss is a normal
    outcome, not an error.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, RegistryEntry] = {}

    def put(self, connection_id: str, profile: UserProfile, room_id: RoomId) -> RegistryEntry:
        entry = RegistryEntry(connection_id=connection_id, room_id=room_id, profile=profile)
        self._entries[connection_id] = entry
        return entry

    def get(self, connection_id: str) -> Optional[RegistryEntry]:
        return self._entries.get(connection_id)

    def remove(self, connection_id: str) -> Optional[RegistryEntry]:
        return self._entries.pop(connection_id, None)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(list(self._entries.values()))
