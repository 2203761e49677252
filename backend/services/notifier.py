"""
Room change notifications.

Every state transition publishes the new Room snapshot; subscribers consume
them through on_room_changed(room_id), which registers immediately.
Delivery is advisory: snapshots may be duplicated, and when a slow
subscriber's buffer is full the oldest snapshot is dropped. Clients treat a
snapshot as "something changed" and re-fetch the authoritative state rather
than trusting deltas.
"""
import asyncio
import logging
from typing import Dict, Optional, Set

from config import settings
from models.game import Room

logger = logging.getLogger(__name__)


class RoomNotifier:
    """
    In-process fan-out of Room snapshots, keyed by room_id.
    Safe for the asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self, queue_size: Optional[int] = None):
        self._queue_size = queue_size or settings.notifier_queue_size
        # {room_id: {queue, ...}}
        self._rooms: Dict[str, Set[asyncio.Queue]] = {}

    def subscribe(self, room_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._rooms.setdefault(room_id, set()).add(queue)
        return queue

    def unsubscribe(self, room_id: str, queue: asyncio.Queue) -> None:
        room_queues = self._rooms.get(room_id, set())
        room_queues.discard(queue)
        if not room_queues:
            self._rooms.pop(room_id, None)

    def subscriber_count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, set()))

    def publish(self, room: Room) -> None:
        for queue in list(self._rooms.get(room.id, set())):
            if queue.full():
                # Drop the oldest; the newest snapshot is the one that matters
                queue.get_nowait()
                logger.debug("[%s] Notifier buffer full — dropped oldest snapshot", room.id)
            queue.put_nowait(room.model_copy(deep=True))

    def on_room_changed(self, room_id: str) -> "RoomSubscription":
        """Subscribe now and return the feed. Changes published after this call
        are buffered even before the caller starts iterating."""
        return RoomSubscription(self, room_id, self.subscribe(room_id))


class RoomSubscription:
    """Async iterator over one room's snapshots. close() stops delivery."""

    def __init__(self, notifier: RoomNotifier, room_id: str, queue: asyncio.Queue):
        self.room_id = room_id
        self._notifier = notifier
        self._queue = queue

    def __aiter__(self) -> "RoomSubscription":
        return self

    async def __anext__(self) -> Room:
        return await self._queue.get()

    def close(self) -> None:
        self._notifier.unsubscribe(self.room_id, self._queue)


_notifier: Optional[RoomNotifier] = None


def get_notifier() -> RoomNotifier:
    global _notifier
    if _notifier is None:
        _notifier = RoomNotifier()
    return _notifier
