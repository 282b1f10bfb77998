# app_container.py
# Description: Builds and wires the store, the remote client, the sync engine and the repository.
#
# Nothing is created at import time; `AppContainer.from_config()` reads the loaded settings and
# tests build one directly with their own database and transport.
#
# Imports
from pathlib import Path
from typing import Optional, Union
#
# 3rd-party Libraries
import httpx
from loguru import logger
#
# Local Imports
from hybrid_users import config
from hybrid_users.DB.Users_DB import UsersDatabase
from hybrid_users.models import LOCAL_ID_PREFIX
from hybrid_users.Sync.Sync_Engine import UserSyncEngine
from hybrid_users.Sync.Sync_Trigger import PeriodicSyncTrigger
from hybrid_users.users_api import UsersAPIClient
from hybrid_users.Users.Status_Feed import StatusFeed
from hybrid_users.Users.Users_Library import UsersRepository
#
#######################################################################################################################
#
# Functions:


class AppContainer:
    def __init__(self,
                 db_path: Union[str, Path],
                 base_url: str,
                 resource: str = "users",
                 client_id: str = config.CLI_APP_CLIENT_ID,
                 timeout: float = 30.0,
                 local_id_prefix: str = LOCAL_ID_PREFIX,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.db = UsersDatabase(db_path, client_id=client_id)
        self.remote = UsersAPIClient(base_url, resource=resource, timeout=timeout, transport=transport)
        self.status_feed = StatusFeed()
        self.engine = UserSyncEngine(self.db, self.remote, local_id_prefix=local_id_prefix)
        self.repository = UsersRepository(
            self.db, self.remote,
            engine=self.engine,
            status_feed=self.status_feed,
            local_id_prefix=local_id_prefix,
        )
        self._triggers = []
        logger.info(f"AppContainer ready: DB '{self.db.db_path_str}', remote '{self.remote.base_url}/{resource}'")

    @classmethod
    def from_config(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "AppContainer":
        remote_settings = config.get_remote_settings()
        sync_settings = config.get_sync_settings()
        db_path: Union[str, Path] = config.get_users_db_path()
        if str(db_path) == ":memory:":
            db_path = ":memory:"
        return cls(
            db_path=db_path,
            base_url=remote_settings["base_url"],
            resource=remote_settings["resource"],
            client_id=config.get_client_id(),
            timeout=remote_settings["timeout"],
            local_id_prefix=sync_settings["local_id_prefix"],
            transport=transport,
        )

    def periodic_trigger(self, interval_seconds: Optional[float] = None,
                         initial_delay_seconds: Optional[float] = None) -> PeriodicSyncTrigger:
        """Creates a periodic trigger bound to this container's repository; stopped on close()."""
        sync_settings = config.get_sync_settings()
        trigger = PeriodicSyncTrigger(
            self.repository,
            interval_seconds=interval_seconds if interval_seconds is not None else sync_settings["interval_seconds"],
            initial_delay_seconds=(initial_delay_seconds if initial_delay_seconds is not None
                                   else sync_settings["initial_delay_seconds"]),
        )
        self._triggers.append(trigger)
        return trigger

    async def close(self):
        for trigger in self._triggers:
            await trigger.stop()
        self._triggers.clear()
        await self.remote.close()
        self.status_feed.close()
        self.db.close_connection()
        logger.info("AppContainer closed.")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

#
# End of app_container.py
#######################################################################################################################
