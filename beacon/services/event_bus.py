import asyncio
import logging

logger = logging.getLogger(__name__)


class ReportEventBus:
    """Simple in-memory pub/sub for broadcasting report changes to their owner."""

    def __init__(self, max_queue_size: int = 100) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._max_queue_size = max_queue_size

    def subscribe(self, user_id: str) -> asyncio.Queue:
        """Subscribe to one user's report events. Returns a queue to await events from."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.setdefault(user_id, set()).add(queue)
        return queue

    def unsubscribe(self, user_id: str, queue: asyncio.Queue) -> None:
        if user_id in self._subscribers:
            self._subscribers[user_id].discard(queue)
            if not self._subscribers[user_id]:
                del self._subscribers[user_id]

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    async def publish(self, user_id: str, event: dict) -> None:
        """Publish an event to every subscriber of the owning user."""
        for queue in list(self._subscribers.get(user_id, set())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event queue full for user %s subscriber", user_id)


event_bus = ReportEventBus()
