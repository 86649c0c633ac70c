"""Room/session state and the relay protocols."""

from .errors import DeliveryError, InvalidPayloadError, RelayError
from .eviction import EvictionScheduler
from .models import Member, Message, MessageUser, Room, RoomState, UserProfile
from .registry import ConnectionRegistry, RegistryEntry
from .router import router
from .service import OperationResult, Outcome, RelayService
from .store import RoomStore
from .transport import Transport, WebSocketTransport

__all__ = [
    "ConnectionRegistry",
    "DeliveryError",
    "EvictionScheduler",
    "InvalidPayloadError",
    "Member",
    "Message",
    "MessageUser",
    "OperationResult",
    "Outcome",
    "RegistryEntry",
    "RelayError",
    "RelayService",
    "Room",
    "RoomState",
    "RoomStore",
    "Transport",
    "UserProfile",
    "WebSocketTransport",
    "router",
]
