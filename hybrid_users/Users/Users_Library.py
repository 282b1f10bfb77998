# Users_Library.py
# Description: Service layer the application talks to for everything user related.
#
# `UsersRepository` is the only consumer of the local store, the remote client and the sync
# engine. Local writes land in the store straight away (marked dirty) and reach the server on
# the next sync. Every operation reports back as a `RepositoryResult` instead of raising, and
# every result message is also published on the status feed.
#
# Imports
import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from typing import List, Optional
#
# Local Imports
from hybrid_users.DB.Users_DB import UsersDatabase, StorageError, InputError
from hybrid_users.DB.Change_Feed import ActiveUsersStream
from hybrid_users.models import LOCAL_ID_PREFIX, User
from hybrid_users.Sync.Sync_Engine import (
    UserSyncEngine,
    ReconciliationError,
    SyncPhaseError,
)
from hybrid_users.users_api import UsersAPIClient, RemoteError
from hybrid_users.Users.Status_Feed import StatusFeed
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

SYNC_STARTED_MESSAGE = "Starting sync..."
SYNC_CANCELLED_MESSAGE = "Sync cancelled"


@dataclass(frozen=True)
class RepositoryResult:
    success: bool
    message: str
    error: Optional[BaseException] = None
    user: Optional[User] = None

    @classmethod
    def ok(cls, message: str, user: Optional[User] = None) -> "RepositoryResult":
        return cls(success=True, message=message, user=user)

    @classmethod
    def fail(cls, message: str, error: Optional[BaseException] = None) -> "RepositoryResult":
        return cls(success=False, message=message, error=error)


class UsersRepository:
    def __init__(self,
                 db: UsersDatabase,
                 remote: UsersAPIClient,
                 engine: Optional[UserSyncEngine] = None,
                 status_feed: Optional[StatusFeed] = None,
                 local_id_prefix: str = LOCAL_ID_PREFIX):
        self.db = db
        self.remote = remote
        self.local_id_prefix = local_id_prefix
        self.engine = engine or UserSyncEngine(db, remote, local_id_prefix=local_id_prefix)
        self.status_feed = status_feed or StatusFeed()
        logger.info(f"UsersRepository ready (DB: {db.db_path_str}, remote: {remote.base_url}).")

    def _report(self, result: RepositoryResult) -> RepositoryResult:
        if result.success:
            logger.info(result.message)
        else:
            logger.error(f"{result.message} ({type(result.error).__name__ if result.error else 'no cause'})")
        self.status_feed.publish(result.message)
        return result

    def new_local_id(self) -> str:
        return f"{self.local_id_prefix}{uuid.uuid4().hex}"

    # --- Reads ---

    def get_all_users_stream(self) -> ActiveUsersStream:
        """Live list of active users; yields now and again after every local or sync write."""
        return self.db.watch_active_users()

    def get_active_users(self) -> List[User]:
        return self.db.get_active_users()

    def get_user(self, user_id: str) -> Optional[User]:
        """Active user by id. Tombstoned rows are treated as gone."""
        user = self.db.get_user_by_id(user_id)
        if user is None or user.pending_delete:
            return None
        return user

    # --- Local writes ---

    async def insert_user(self, user: User) -> RepositoryResult:
        user_id = user.id.strip() if user.id else ""
        to_store = user.model_copy(update={
            "id": user_id or self.new_local_id(),
            "pending_sync": True,
            "pending_delete": False,
        })
        try:
            self.db.insert_user(to_store)
        except (StorageError, InputError) as e:
            return self._report(RepositoryResult.fail(f"Error inserting user: {e}", e))
        return self._report(RepositoryResult.ok(f"User '{to_store.full_name or to_store.id}' saved locally", to_store))

    async def update_user(self, user: User) -> RepositoryResult:
        to_store = user.model_copy(update={"pending_sync": True})
        try:
            self.db.update_user(to_store)
        except (StorageError, InputError) as e:
            return self._report(RepositoryResult.fail(f"Error updating user: {e}", e))
        return self._report(RepositoryResult.ok(f"User '{to_store.full_name or to_store.id}' updated locally", to_store))

    async def delete_user(self, user: User) -> RepositoryResult:
        """Logical delete: the row is hidden now and removed after the next upload."""
        to_store = user.model_copy(update={"pending_sync": True, "pending_delete": True})
        try:
            self.db.update_user(to_store)
        except (StorageError, InputError) as e:
            return self._report(RepositoryResult.fail(f"Error deleting user: {e}", e))
        return self._report(RepositoryResult.ok(f"User '{to_store.full_name or to_store.id}' marked for deletion", to_store))

    async def add_test_user(self) -> RepositoryResult:
        """Seeds one random user, handy for exercising a sync by hand."""
        number = random.randint(1, 999)
        user = User(
            first_name="Test",
            last_name=f"User {number}",
            email=f"test.user{number}@example.com",
            age=random.randint(18, 80),
            user_name=f"test_user_{number}",
            position_title="Tester",
            image=f"https://randomuser.me/api/portraits/lego/{random.randint(0, 8)}.jpg",
        )
        return await self.insert_user(user)

    # --- Sync ---

    async def upload_pending_changes(self) -> RepositoryResult:
        try:
            summary = await self.engine.upload_pending_changes()
        except (RemoteError, StorageError, ReconciliationError) as e:
            return self._report(RepositoryResult.fail(f"Upload error: {e}", e))
        return self._report(RepositoryResult.ok(summary.message()))

    async def sync_from_server(self) -> RepositoryResult:
        try:
            summary = await self.engine.sync_from_server()
        except (RemoteError, StorageError) as e:
            return self._report(RepositoryResult.fail(f"Download error: {e}", e))
        return self._report(RepositoryResult.ok(summary.message()))

    async def sync(self) -> RepositoryResult:
        """Upload then download. A failed upload skips the download."""
        self.status_feed.publish(SYNC_STARTED_MESSAGE)
        try:
            report = await self.engine.sync()
        except asyncio.CancelledError:
            self.status_feed.publish(SYNC_CANCELLED_MESSAGE)
            raise
        except SyncPhaseError as e:
            phase = e.phase.capitalize()
            return self._report(RepositoryResult.fail(f"{phase} error: {e.cause}", e.cause))
        return self._report(RepositoryResult.ok(report.message()))

#
# End of Users_Library.py
#######################################################################################################################
