# Status_Feed.py
# Description: Fan-out of short user-facing status messages ("Upload: 2 updated, 0 deleted", ...).
#
# Imports
import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Set
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

_CLOSED = object()


class StatusSubscription:
    """
    One subscriber's view of a StatusFeed. Registered on creation, so nothing published
    after `subscribe()` returns is missed. Iterate with `async for`.
    """

    def __init__(self, feed: "StatusFeed", maxsize: int):
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._done = False

    def _offer(self, item):
        if self._queue.full():
            # Drop the oldest message for this subscriber only
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(item)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self._done:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self.close()
            raise StopAsyncIteration
        return item

    def pending(self) -> List[str]:
        """Drains and returns whatever is queued right now without waiting."""
        items = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self.close()
                break
            items.append(item)
        return items

    def close(self):
        if not self._done:
            self._done = True
            self._feed._unsubscribe(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class StatusFeed:
    def __init__(self, history_size: int = 50, subscriber_queue_size: int = 100):
        self.history: Deque[str] = deque(maxlen=history_size)
        self._subscriber_queue_size = subscriber_queue_size
        self._subscribers: Set[StatusSubscription] = set()
        self._closed = False

    @property
    def last_message(self) -> Optional[str]:
        return self.history[-1] if self.history else None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: str):
        if self._closed:
            logger.debug(f"Status feed closed, dropping message: {message}")
            return
        self.history.append(message)
        logger.info(f"Status: {message}")
        for subscription in list(self._subscribers):
            subscription._offer(message)

    def subscribe(self) -> StatusSubscription:
        subscription = StatusSubscription(self, self._subscriber_queue_size)
        if self._closed:
            subscription._offer(_CLOSED)
        else:
            self._subscribers.add(subscription)
        return subscription

    def _unsubscribe(self, subscription: StatusSubscription):
        self._subscribers.discard(subscription)

    def close(self):
        """Ends every subscription once its queued messages have been consumed."""
        if self._closed:
            return
        self._closed = True
        for subscription in list(self._subscribers):
            subscription._offer(_CLOSED)
        self._subscribers.clear()

#
# End of Status_Feed.py
#######################################################################################################################
