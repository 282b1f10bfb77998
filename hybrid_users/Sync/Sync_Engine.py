# Sync_Engine.py
# Description: Two-phase synchronization between the local users store and the remote user service.
#
# A sync pushes local changes first and pulls the server state second:
#
#   1. Upload   - dirty rows are created (local ids) or updated (server ids) remotely; a successful
#                 create swaps the temporary row for the server record. Tombstones are deleted
#                 remotely on a best-effort basis and then removed locally no matter what.
#   2. Download - the full remote listing is merged in. Known ids are overwritten, unknown ids are
#                 inserted, rows that are still dirty locally are left alone. Nothing is removed.
#
# Only one sync runs at a time. A `sync()` call that arrives while another is in flight waits for
# that run and shares its result instead of uploading the same dirty set twice. The run is cancelled
# only once every caller waiting on it has been cancelled; each row is then either fully reconciled
# or left as it was.
#
# Store calls are made directly on the event loop. They are local SQLite statements on a handful
# of rows and are expected to return quickly; only the remote calls yield.
#
# Imports
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
#
# Local Imports
from hybrid_users.DB.Users_DB import UsersDatabase, StorageError
from hybrid_users.models import LOCAL_ID_PREFIX, User, is_local_id
from hybrid_users.users_api import UsersAPIClient, RemoteError
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """The server answered in a way the local state cannot be reconciled with."""

    def __init__(self, message: str, user_id: Optional[str] = None):
        super().__init__(message)
        self.user_id = user_id


class SyncPhaseError(Exception):
    """Wraps the failure of one sync phase so callers can tell upload from download."""

    def __init__(self, phase: str, cause: BaseException):
        super().__init__(f"{phase} failed: {cause}")
        self.phase = phase
        self.cause = cause


# Everything a phase is allowed to fail with; anything else is a bug and propagates as-is.
SYNC_ERRORS = (RemoteError, StorageError, ReconciliationError)


@dataclass
class UploadSummary:
    updated: int = 0
    deleted: int = 0
    remote_delete_failures: int = 0

    def message(self) -> str:
        return f"Upload: {self.updated} updated, {self.deleted} deleted"


@dataclass
class DownloadSummary:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def message(self) -> str:
        text = f"Download: {self.inserted} new, {self.updated} updated"
        if self.skipped:
            text += f", {self.skipped} kept local"
        return text


@dataclass
class SyncReport:
    upload: UploadSummary
    download: DownloadSummary
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def message(self) -> str:
        return f"{self.upload.message()}. {self.download.message()}"


class UserSyncEngine:
    """
    Orchestrates upload and download between a `UsersDatabase` and a `UsersAPIClient`.

    The engine holds no entity state between calls; every phase re-reads the store.
    """

    def __init__(self, db: UsersDatabase, remote: UsersAPIClient, local_id_prefix: str = LOCAL_ID_PREFIX):
        self.db = db
        self.remote = remote
        self.local_id_prefix = local_id_prefix
        self._lock = asyncio.Lock()
        self._in_flight: Optional[asyncio.Task] = None
        self._waiters = 0
        self.last_report: Optional[SyncReport] = None
        logger.info(f"UserSyncEngine initialized for DB '{db.db_path_str}' and service '{remote.base_url}'.")

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    # --- Public API ---

    async def upload_pending_changes(self) -> UploadSummary:
        async with self._lock:
            return await self._upload()

    async def sync_from_server(self) -> DownloadSummary:
        async with self._lock:
            return await self._download()

    async def sync(self) -> SyncReport:
        """
        Runs upload then download. Raises SyncPhaseError naming the phase that failed; a failed
        upload skips the download, a failed download keeps whatever the upload committed.
        """
        task = self._in_flight
        if task is not None and not task.done():
            logger.info("Sync already in progress; joining the in-flight run.")
        else:
            task = asyncio.get_running_loop().create_task(self._run_sync(), name="user-sync")
            self._in_flight = task
            self._waiters = 0
            task.add_done_callback(self._clear_in_flight)

        self._waiters += 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                self._waiters -= 1
                if self._waiters == 0:
                    logger.warning("Every caller of the running sync was cancelled; cancelling the sync.")
                    task.cancel()
                    # Let the run unwind so the store is settled when the caller sees the cancellation
                    await asyncio.wait([task])
            raise

    def _clear_in_flight(self, task: asyncio.Task):
        if self._in_flight is task:
            self._in_flight = None
            self._waiters = 0

    async def _run_sync(self) -> SyncReport:
        async with self._lock:
            logger.info("Starting sync cycle...")
            try:
                upload = await self._upload()
            except asyncio.CancelledError:
                logger.warning("Sync cycle cancelled during upload; finished rows stay reconciled.")
                raise
            except SYNC_ERRORS as e:
                logger.error(f"Upload phase failed, skipping download: {e}")
                raise SyncPhaseError("upload", e) from e
            try:
                download = await self._download()
            except SYNC_ERRORS as e:
                logger.error(f"Download phase failed: {e}")
                raise SyncPhaseError("download", e) from e
            report = SyncReport(upload=upload, download=download)
            self.last_report = report
            logger.info(f"Sync cycle finished. {report.message()}")
            return report

    # --- Phase 1: Upload ---

    async def _upload(self) -> UploadSummary:
        summary = UploadSummary()

        users_to_sync = self.db.get_users_to_sync()
        logger.info(f"Found {len(users_to_sync)} pending user changes to push.")
        for user in users_to_sync:
            if is_local_id(user.id, self.local_id_prefix):
                await self._push_create(user)
            else:
                await self._push_update(user)
            summary.updated += 1

        users_to_delete = self.db.get_users_to_delete()
        logger.info(f"Found {len(users_to_delete)} pending deletions to push.")
        for user in users_to_delete:
            if not await self._push_delete(user):
                summary.remote_delete_failures += 1
            self.db.physical_delete_user(user)
            summary.deleted += 1

        logger.info(summary.message())
        return summary

    async def _push_create(self, user: User):
        remote_user = await self.remote.create_user(user)
        if not remote_user.id or is_local_id(remote_user.id, self.local_id_prefix):
            raise ReconciliationError(
                f"Server create for '{user.id}' returned no usable id ({remote_user.id!r}).", user_id=user.id)
        stored = self.db.replace_local_user(user, remote_user)
        logger.debug(f"Created '{user.id}' remotely as '{stored.id}'.")

    async def _push_update(self, user: User):
        await self.remote.update_user(user.id, user)
        if self.db.mark_synced(user):
            logger.debug(f"Updated '{user.id}' remotely.")

    async def _push_delete(self, user: User) -> bool:
        """Best-effort remote delete. Never raises for remote failures."""
        if is_local_id(user.id, self.local_id_prefix):
            # Never reached the server; nothing to delete remotely
            return True
        try:
            await self.remote.delete_user(user.id)
            logger.debug(f"Deleted '{user.id}' remotely.")
            return True
        except RemoteError as e:
            logger.error(f"Error deleting '{user.id}' remotely, removing local tombstone anyway: {e}")
            return False

    # --- Phase 2: Download ---

    async def _download(self) -> DownloadSummary:
        remote_users = await self.remote.get_all_users()
        local_ids = self.db.get_all_ids()

        by_id: Dict[str, User] = {}
        for remote_user in remote_users:
            if not remote_user.id:
                logger.warning("Ignoring remote user without an id.")
                continue
            by_id[remote_user.id] = remote_user

        users_to_update: List[User] = [u for uid, u in by_id.items() if uid in local_ids]
        users_to_insert: List[User] = [u for uid, u in by_id.items() if uid not in local_ids]
        logger.info(f"Remote listing: {len(users_to_insert)} new, {len(users_to_update)} known.")

        updated = self.db.bulk_update_users(users_to_update) if users_to_update else 0
        inserted = self.db.bulk_insert_users(users_to_insert) if users_to_insert else 0
        skipped = len(users_to_update) + len(users_to_insert) - updated - inserted

        summary = DownloadSummary(inserted=inserted, updated=updated, skipped=skipped)
        logger.info(summary.message())
        return summary

#
# End of Sync_Engine.py
#######################################################################################################################
