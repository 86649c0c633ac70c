"""Data models for rooms, members and chat messages.

Wire-facing models are pydantic models whose field names match the JSON
payloads exchanged with clients (camelCase, as the browser client expects).
The Room aggregate itself is a plain dataclass: it is mutable server-side
state and is never sent to clients as-is, only through ``snapshot()``.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Maximum number of messages included in the snapshot sent to a joiner
DEFAULT_SNAPSHOT_LIMIT = 50


# Room ids are caller-supplied JSON scalars: strings or numbers
RoomId = Union[str, int, float]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _present(value: Any) -> Any:
    if value is None:
        raise ValueError("field is required")
    return value


# =============================================================================
# Wire models
# =============================================================================


class UserProfile(BaseModel):
    """Profile a client supplies when joining a room.

    Only ``name`` is required, and only its presence is checked. Any extra
    fields the client sends are kept and echoed back inside the member
    record.

    Attributes:
        name: Display name shown to other members.
        role: Free-form role label (e.g. "host", "guest").
    """
    model_config = ConfigDict(extra="allow")

    name: Any = Field(..., description="Display name")
    role: Optional[Any] = Field(default="", description="Free-form role label")

    @field_validator("name")
    @classmethod
    def _name_present(cls, value: Any) -> Any:
        return _present(value)


class Member(UserProfile):
    """A connection's presence record inside one room.

    Attributes:
        id: Connection id of the member.
        joinedAt: When the connection (last) joined the room.
    """
    id: str = Field(..., description="Connection id")
    joinedAt: datetime = Field(default_factory=utc_now, description="Join time (UTC)")

    @classmethod
    def from_profile(
        cls, connection_id: str, profile: UserProfile, joined_at: Optional[datetime] = None
    ) -> "Member":
        data = profile.model_dump()
        data["id"] = connection_id
        data["joinedAt"] = joined_at or utc_now()
        return cls(**data)


class MessageUser(BaseModel):
    """Sender identity attached to a chat message, as the client gave it."""
    id: Any = Field(..., description="Sender connection id")
    name: Any = Field(..., description="Sender display name")
    role: Optional[Any] = Field(default="", description="Sender role")

    @field_validator("id", "name")
    @classmethod
    def _identity_present(cls, value: Any) -> Any:
        return _present(value)


class Message(BaseModel):
    """A chat message. Immutable once created.

    Attributes:
        id: Time-derived identifier, unique within the process.
        text: Message body, taken verbatim from the client.
        user: Sender identity.
        timestamp: Creation time (UTC).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    user: MessageUser
    timestamp: datetime = Field(default_factory=utc_now)


class MessageIdFactory:
    """Issues millisecond-epoch message ids that never repeat.

    Ids are derived from the wall clock; when the clock has not advanced
    since the previous id (or went backwards) the last id is bumped by one.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0

    def __call__(self) -> str:
        candidate = int(self._clock() * 1000)
        if candidate <= self._last:
            candidate = self._last + 1
        self._last = candidate
        return str(candidate)


# =============================================================================
# Room aggregate
# =============================================================================


class RoomState(str, Enum):
    """Lifecycle state of a stored room.

    A room that is not stored at all is ABSENT; that state has no
    representation here. EMPTY is a room with no members and no eviction
    scheduled, which only happens once evictions were cancelled at shutdown.
    """
    ACTIVE = "active"
    EMPTY_PENDING = "empty_pending"
    EMPTY = "empty"


@dataclass
class Room:
    """Server-held room: members keyed by connection id plus message history."""
    id: RoomId
    members: Dict[str, Member] = field(default_factory=dict)
    messages: List[Message] = field(default_factory=list)
    # Reserved for Q&A and polls; always empty for now
    questions: List[Any] = field(default_factory=list)
    polls: List[Any] = field(default_factory=list)

    def users(self) -> List[dict]:
        return [m.model_dump(mode="json") for m in self.members.values()]

    def recent_messages(self, limit: int = DEFAULT_SNAPSHOT_LIMIT) -> List[Message]:
        """Last ``limit`` messages in append order. Does not trim the log."""
        if limit <= 0:
            return []
        return self.messages[-limit:]

    def snapshot(self, limit: int = DEFAULT_SNAPSHOT_LIMIT) -> dict:
        return {
            "id": self.id,
            "users": self.users(),
            "messages": [m.model_dump(mode="json") for m in self.recent_messages(limit)],
            "questions": list(self.questions),
            "polls": list(self.polls),
        }
