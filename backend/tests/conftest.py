"""Shared test fixtures and configuration for backend tests."""
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

import pytest
from fastapi.testclient import TestClient

from roomrelay.config import AppConfig, RoomSettings, ServerSettings
from roomrelay.main import create_app
from roomrelay.rooms.errors import DeliveryError
from roomrelay.rooms.service import RelayService
from roomrelay.rooms.transport import Transport

# Short grace period so eviction tests finish quickly
TEST_GRACE_SECONDS = 0.05


class RecordingTransport(Transport):
    """In-memory transport that records every delivered event.

    Connections listed in ``offline`` behave like closed sockets: sending
    to them or subscribing them raises DeliveryError.
    """

    def __init__(self) -> None:
        self.groups: Dict[str, Set[str]] = defaultdict(set)
        self.sent: List[Tuple[str, str, dict]] = []
        self.offline: Set[str] = set()

    def subscribe(self, connection_id: str, room_id: str) -> None:
        if connection_id in self.offline:
            raise DeliveryError(connection_id)
        self.groups[room_id].add(connection_id)

    def unsubscribe(self, connection_id: str, room_id: str) -> None:
        self.groups[room_id].discard(connection_id)

    def send(self, connection_id: str, event: str, payload: dict) -> None:
        if connection_id in self.offline:
            raise DeliveryError(connection_id)
        self.sent.append((connection_id, event, payload))

    def broadcast(
        self, room_id: str, event: str, payload: dict, exclude: Optional[str] = None
    ) -> None:
        for connection_id in sorted(self.groups.get(room_id, ())):
            if connection_id != exclude:
                self.sent.append((connection_id, event, payload))

    def release(self, connection_id: str) -> None:
        for members in self.groups.values():
            members.discard(connection_id)

    def events(self, connection_id: str, event: Optional[str] = None) -> List[dict]:
        """Payloads delivered to a connection, optionally filtered by event type."""
        return [
            payload for cid, ev, payload in self.sent
            if cid == connection_id and (event is None or ev == event)
        ]

    def event_types(self, connection_id: str) -> List[str]:
        return [ev for cid, ev, _ in self.sent if cid == connection_id]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def relay(transport):
    """RelayService wired to a RecordingTransport with a short grace period."""
    return RelayService(transport, grace_period_seconds=TEST_GRACE_SECONDS)


@pytest.fixture
def test_config(tmp_path):
    """Config with a short grace period and no frontend directory."""
    return AppConfig(
        server=ServerSettings(static_dir=str(tmp_path / "no-frontend")),
        rooms=RoomSettings(grace_period_seconds=0.5),
    )


@pytest.fixture
def api_client(test_config):
    """TestClient for a fresh app instance.

    Used as a context manager so every request and WebSocket shares one
    event loop (eviction tasks live on it).
    """
    app = create_app(test_config)
    with TestClient(app) as client:
        yield client
