"""Deferred eviction of empty rooms.

When the last member leaves a room it is kept for a grace period so a
client that reconnects right away finds its history intact. Each room has
at most one pending eviction task. The task re-reads the member count when
it fires, so a join that lands during the grace period always wins even if
nobody cancelled the task.
"""
import asyncio
import logging
from typing import Dict

from .models import RoomId
from .store import RoomStore

logger = logging.getLogger(__name__)

# Default time an empty room is retained before it is evicted
DEFAULT_GRACE_PERIOD_SECONDS = 60.0


class EvictionScheduler:
    """Cancellable per-room eviction tasks on the running event loop."""

    def __init__(
        self, store: RoomStore, grace_period_seconds: float = DEFAULT_GRACE_PERIOD_SECONDS
    ) -> None:
        self.store = store
        self.grace_period_seconds = grace_period_seconds
        self._tasks: Dict[RoomId, asyncio.Task] = {}

    def schedule(self, room_id: RoomId) -> asyncio.Task:
        """Schedule eviction of ``room_id`` after the grace period.

        Replaces any eviction already pending for the room. Must be called
        from within a running event loop.
        """
        self.cancel(room_id)
        task = asyncio.get_running_loop().create_task(
            self._evict_later(room_id), name=f"evict-room-{room_id}"
        )
        self._tasks[room_id] = task
        logger.debug(
            "[Eviction] Room %s empty, evicting in %.1fs", room_id, self.grace_period_seconds
        )
        return task

    def cancel(self, room_id: RoomId) -> bool:
        task = self._tasks.pop(room_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("[Eviction] Cancelled pending eviction of room %s", room_id)
        return True

    def cancel_all(self) -> None:
        for room_id in list(self._tasks):
            self.cancel(room_id)

    def is_pending(self, room_id: RoomId) -> bool:
        task = self._tasks.get(room_id)
        return task is not None and not task.done()

    def evict_if_empty(self, room_id: RoomId) -> bool:
        """Delete the room if it still exists with no members.

        Returns True when the room was removed.
        """
        room = self.store.get(room_id)
        if room is None or room.members:
            return False
        self.store.delete(room_id)
        logger.info("[Eviction] Room %s removed (empty)", room_id)
        return True

    async def _evict_later(self, room_id: RoomId) -> None:
        await asyncio.sleep(self.grace_period_seconds)
        if self._tasks.get(room_id) is asyncio.current_task():
            del self._tasks[room_id]
        self.evict_if_empty(room_id)
