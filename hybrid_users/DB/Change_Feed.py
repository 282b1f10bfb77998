# Change_Feed.py
# Description: Push-based live view over the active (non-tombstoned) users of a UsersDatabase.
#
# Imports
import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional
#
# Local Imports
if TYPE_CHECKING:
    from hybrid_users.DB.Users_DB import UsersDatabase
    from hybrid_users.models import User
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


class ActiveUsersStream:
    """
    Async iterator over snapshots of the active users.

    The first iteration yields the current state. Every later iteration waits until the
    database announces a committed write and then yields a fresh snapshot. Writes that land
    while the consumer is busy are coalesced into a single snapshot, so a slow consumer
    always sees the latest state rather than a backlog.

    Usage:
        async with db.watch_active_users() as stream:
            async for users in stream:
                render(users)
    """

    def __init__(self, db: "UsersDatabase"):
        self._db = db
        self._changed = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._started = False
        self._closed = False

    def _on_change(self, operation: str, user_ids: List[str]):
        loop = self._loop
        if loop is None or loop.is_closed() or self._closed:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._changed.set()
        else:
            # Write committed from another thread
            loop.call_soon_threadsafe(self._changed.set)

    def __aiter__(self):
        return self

    async def __anext__(self) -> List["User"]:
        if self._closed:
            raise StopAsyncIteration
        if not self._started:
            self._started = True
            self._loop = asyncio.get_running_loop()
            self._db.add_change_listener(self._on_change)
        else:
            await self._changed.wait()
            if self._closed:
                raise StopAsyncIteration
        self._changed.clear()
        return self._db.get_active_users()

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._db.remove_change_listener(self._on_change)
        self._changed.set()
        logger.debug("Active users stream closed.")

    async def aclose(self):
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

#
# End of Change_Feed.py
#######################################################################################################################
