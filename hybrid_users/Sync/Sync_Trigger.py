# Sync_Trigger.py
# Description: Event sources that ask the repository to "sync now".
#
# Two flavours are provided:
# - `fire_and_forget_sync(repository)` schedules one sync without waiting for it, which is what a
#   UI gesture (button, shake, keybinding) wants.
# - `PeriodicSyncTrigger` runs a sync every `interval_seconds` until stopped.
#
# Both go through `UsersRepository.sync()`, so overlapping requests collapse onto a single run.
#
# Imports
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Set
#
# Local Imports
if TYPE_CHECKING:
    from hybrid_users.Users.Users_Library import UsersRepository, RepositoryResult
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

# Strong references to fire-and-forget tasks so they are not collected mid-run
_background_tasks: Set[asyncio.Task] = set()


def fire_and_forget_sync(repository: "UsersRepository") -> asyncio.Task:
    """Schedules `repository.sync()` on the running loop and returns immediately."""
    task = asyncio.get_running_loop().create_task(repository.sync(), name="user-sync-request")
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


class TriggerStatus(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class TriggerMetrics:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    last_run_time: Optional[datetime] = None
    last_message: Optional[str] = None
    last_execution_duration_seconds: float = 0.0

    def record(self, success: bool, message: Optional[str], execution_time: float):
        self.total_runs += 1
        if success:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
        self.last_run_time = datetime.now()
        self.last_message = message
        self.last_execution_duration_seconds = execution_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_message": self.last_message,
            "last_execution_duration_seconds": self.last_execution_duration_seconds,
        }


class PeriodicSyncTrigger:
    """
    Asyncio background loop that syncs the repository on a fixed interval.

    A failed sync is counted and the loop carries on; the repository has already
    reported the failure on its status feed.
    """

    def __init__(self, repository: "UsersRepository", interval_seconds: float,
                 initial_delay_seconds: float = 0.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.repository = repository
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = max(initial_delay_seconds, 0.0)
        self.status = TriggerStatus.STOPPED
        self.metrics = TriggerMetrics()
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()
        self._lifecycle_lock = asyncio.Lock()
        logger.info(f"Initialized periodic sync trigger (interval: {interval_seconds}s, "
                    f"initial_delay: {self.initial_delay_seconds}s)")

    @property
    def is_running(self) -> bool:
        return self.status == TriggerStatus.RUNNING

    async def start(self) -> bool:
        async with self._lifecycle_lock:
            if self.status != TriggerStatus.STOPPED:
                logger.warning(f"Periodic sync trigger is already {self.status.value}")
                return False
            self._shutdown_event.clear()
            self._task = asyncio.create_task(self._run_loop(), name="periodic-user-sync")
            self.status = TriggerStatus.RUNNING
            logger.info("Started periodic sync trigger")
            return True

    async def stop(self):
        async with self._lifecycle_lock:
            if self.status == TriggerStatus.STOPPED:
                logger.debug("Periodic sync trigger is already stopped")
                return
            logger.info("Stopping periodic sync trigger...")
            self._shutdown_event.set()
            self.status = TriggerStatus.STOPPED
            if self._task and not self._task.done():
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    logger.debug("Periodic sync loop cancelled")
            self._task = None
            logger.info("Periodic sync trigger stopped")

    def trigger_now(self) -> asyncio.Task:
        """Requests an immediate sync outside the schedule without waiting for it."""
        logger.info("Immediate sync requested")
        task = asyncio.get_running_loop().create_task(self.run_once(), name="user-sync-now")
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    async def run_once(self) -> "RepositoryResult":
        start_time = time.perf_counter()
        try:
            result = await self.repository.sync()
        except Exception as e:
            # Not a sync failure the repository knows how to report; count it and re-raise
            self.metrics.record(False, str(e), time.perf_counter() - start_time)
            raise
        self.metrics.record(result.success, result.message, time.perf_counter() - start_time)
        return result

    async def _wait_or_shutdown(self, seconds: float) -> bool:
        """Sleeps up to `seconds`. Returns True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run_loop(self):
        if self.initial_delay_seconds and await self._wait_or_shutdown(self.initial_delay_seconds):
            return
        while not self._shutdown_event.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic sync raised unexpectedly: {e}", exc_info=True)
            if await self._wait_or_shutdown(self.interval_seconds):
                break

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "interval_seconds": self.interval_seconds,
            "initial_delay_seconds": self.initial_delay_seconds,
            "metrics": self.metrics.to_dict(),
        }

#
# End of Sync_Trigger.py
#######################################################################################################################
