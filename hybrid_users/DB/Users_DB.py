# Users_DB.py
#########################################
# Users_DB Library
# Local durable store for the offline-first user directory.
#
# This library provides a `UsersDatabase` class that encapsulates every read and write
# against one SQLite file (or ':memory:'). Each row carries two local-only sync flags:
#
# - `pending_sync`:   the local copy has changes not yet reflected remotely.
# - `pending_delete`: the row was deleted locally (tombstone) and the remote delete is
#                     still outstanding. A tombstone is always also `pending_sync`.
#
# Key Features:
# - Instance-based: Each `UsersDatabase` object connects to a specific DB file.
# - Thread-Safety: Uses thread-local storage for database connections.
# - Schema Versioning: Checks and applies the schema upon initialization.
# - Upsert Inserts: Inserting a colliding id replaces the stored row.
# - Sync Queries: Dirty rows, tombstones and the full id set for the sync engine.
# - Guarded Merges: Bulk writes coming from the server never overwrite dirty rows.
# - Change Listeners: Every committed write is announced to registered callbacks,
#   which is what the live active-users stream is built on.
####
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

# --- Logging Setup ---
import logging

#
# Local Imports
from hybrid_users.models import BUSINESS_FIELDS, User
from hybrid_users.DB.Change_Feed import ActiveUsersStream
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, List[str]], None]


# --- Custom Exceptions ---
class StorageError(Exception):
    """Base exception for local storage errors."""
    pass


class SchemaError(StorageError):
    """Exception for schema version mismatches or initialization failures."""
    pass


class RecordNotFoundError(StorageError):
    """Raised when an update targets a user that is not stored locally."""

    def __init__(self, message="User not found in local store.", identifier=None):
        super().__init__(message)
        self.identifier = identifier

    def __str__(self):
        base = super().__str__()
        return f"{base} (ID: {self.identifier})" if self.identifier else base


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


# --- Database Class ---
class UsersDatabase:
    _CURRENT_SCHEMA_VERSION = 1

    _TABLES_SQL_V1 = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY NOT NULL
    );
    INSERT OR IGNORE INTO schema_version (version) VALUES (0);

    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY NOT NULL,
        first_name TEXT NOT NULL DEFAULT '',
        last_name TEXT NOT NULL DEFAULT '',
        email TEXT NOT NULL DEFAULT '',
        age INTEGER NOT NULL DEFAULT 0,
        user_name TEXT NOT NULL DEFAULT '',
        position_title TEXT NOT NULL DEFAULT '',
        image TEXT NOT NULL DEFAULT '',
        pending_sync BOOLEAN NOT NULL DEFAULT 0,
        pending_delete BOOLEAN NOT NULL DEFAULT 0,
        last_modified DATETIME NOT NULL,
        client_id TEXT NOT NULL,
        CHECK (pending_delete = 0 OR pending_sync = 1)
    );
    """

    _INDICES_SQL_V1 = """
    CREATE INDEX IF NOT EXISTS idx_users_pending_sync ON users(pending_sync);
    CREATE INDEX IF NOT EXISTS idx_users_pending_delete ON users(pending_delete);
    CREATE INDEX IF NOT EXISTS idx_users_sync_state ON users(pending_sync, pending_delete);
    CREATE INDEX IF NOT EXISTS idx_users_last_modified ON users(last_modified);
    """

    _TRIGGERS_SQL_V1 = """
    DROP TRIGGER IF EXISTS users_validate_sync_update;
    CREATE TRIGGER users_validate_sync_update BEFORE UPDATE ON users
    BEGIN
        SELECT RAISE(ABORT, 'Sync Error (users): id cannot be changed.')
        WHERE NEW.id IS NOT OLD.id;
        SELECT RAISE(ABORT, 'Sync Error (users): Client ID cannot be NULL or empty.')
        WHERE NEW.client_id IS NULL OR NEW.client_id = '';
    END;
    """

    _SCHEMA_UPDATE_VERSION_SQL_V1 = "UPDATE schema_version SET version = 1 WHERE version = 0;"

    _COLUMNS = ("id",) + BUSINESS_FIELDS + ("pending_sync", "pending_delete", "last_modified", "client_id")

    def __init__(self, db_path: Union[str, Path], client_id: str):
        """
        Initializes the UsersDatabase instance and ensures the schema exists.

        Args:
            db_path (Union[str, Path]): The path to the SQLite database file or ':memory:'.
            client_id (str): Identifier of the client instance writing to this database.

        Raises:
            ValueError: If client_id is empty or None.
            StorageError: If database initialization or schema setup fails.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(":memory:") if self.is_memory_db else Path(db_path).resolve()
        self.db_path_str = ':memory:' if self.is_memory_db else str(self.db_path)

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing UsersDatabase object for path: {self.db_path_str} [Client ID: {self.client_id}]")

        self._local = threading.local()
        self._listeners: List[ChangeListener] = []
        self._listeners_lock = threading.Lock()

        try:
            self._initialize_schema()
        except (StorageError, sqlite3.Error) as e:
            logger.critical(f"FATAL: Users DB Initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            raise StorageError(f"Users Database initialization failed: {e}") from e
        logger.debug(f"UsersDatabase initialization completed successfully for {self.db_path_str}")

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            try:
                conn.execute("SELECT 1")
                return conn
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection to {self.db_path_str} was closed. Reopening.")
                self._local.conn = None

        try:
            conn = sqlite3.connect(
                self.db_path_str,
                check_same_thread=False,  # Required for threading.local
                timeout=10  # seconds
            )
            conn.row_factory = sqlite3.Row
            if not self.is_memory_db:
                conn.execute("PRAGMA journal_mode=WAL;")
            self._local.conn = conn
            logger.debug(
                f"Opened SQLite connection to {self.db_path_str} [Client: {self.client_id}, Thread: {threading.current_thread().name}]")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to database at {self.db_path_str}: {e}", exc_info=True)
            self._local.conn = None
            raise StorageError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._local.conn = None
        try:
            conn.close()
            logger.debug(f"Closed connection for thread {threading.current_thread().name}.")
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection: {e}")

    # --- Query Execution ---
    def execute_query(self, query: str, params: tuple = None, *, commit: bool = False) -> sqlite3.Cursor:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            logger.debug(f"Executing Query: {query[:200]}... Params: {str(params)[:100]}...")
            cursor.execute(query, params or ())
            if commit:
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.error(f"Integrity error: {query[:200]}... Error: {e}", exc_info=True)
            raise StorageError(f"Integrity constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query failed: {query[:200]}... Error: {e}", exc_info=True)
            raise StorageError(f"Query execution failed: {e}") from e

    def execute_many(self, query: str, params_list: List[tuple], *, commit: bool = False) -> Optional[sqlite3.Cursor]:
        conn = self.get_connection()
        if not isinstance(params_list, list):
            raise TypeError("params_list must be a list.")
        if not params_list:
            return None
        try:
            cursor = conn.cursor()
            logger.debug(f"Executing Many: {query[:150]}... with {len(params_list)} sets.")
            cursor.executemany(query, params_list)
            if commit:
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.error(f"Integrity error during Execute Many: {query[:150]}... Error: {e}", exc_info=True)
            raise StorageError(f"Integrity constraint violation during batch: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Execute Many failed: {query[:150]}... Error: {e}", exc_info=True)
            raise StorageError(f"Execute Many failed: {e}") from e

    # --- Transaction Context ---
    @contextmanager
    def transaction(self):
        conn = self.get_connection()
        in_outer = conn.in_transaction
        try:
            if not in_outer:
                conn.execute("BEGIN")
            yield conn
            if not in_outer:
                conn.commit()
        except Exception as e:
            if not in_outer:
                logger.error(f"Transaction failed, rolling back: {type(e).__name__} - {e}")
                try:
                    conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.error(f"Rollback FAILED: {rb_err}", exc_info=True)
            if isinstance(e, sqlite3.Error):
                raise StorageError(f"Transaction failed: {e}") from e
            raise

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table: schema_version" in str(e).lower():
                return 0
            raise StorageError(f"Could not determine schema version: {e}") from e

    def _apply_schema_v1(self, conn: sqlite3.Connection):
        logger.info(f"Applying initial schema (Version 1) to DB: {self.db_path_str}...")
        try:
            conn.executescript(f"""
                BEGIN;
                {self._TABLES_SQL_V1}
                {self._INDICES_SQL_V1}
                {self._TRIGGERS_SQL_V1}
                {self._SCHEMA_UPDATE_VERSION_SQL_V1}
                COMMIT;
            """)
        except sqlite3.Error as e:
            logger.error(f"[Schema V1] Application failed: {e}", exc_info=True)
            if conn.in_transaction:
                conn.rollback()
            raise StorageError(f"DB schema V1 setup failed: {e}") from e

        cursor = conn.execute("PRAGMA table_info(users)")
        columns = {row['name'] for row in cursor.fetchall()}
        missing_cols = set(self._COLUMNS) - columns
        if missing_cols:
            raise SchemaError(f"Validation Error: users table missing columns: {missing_cols}")
        logger.info(f"[Schema V1] Schema V1 applied and committed for DB: {self.db_path_str}.")

    def _initialize_schema(self):
        conn = self.get_connection()
        current_db_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.info(f"Checking DB schema. Current: {current_db_version}, Code supports: {target_version}")

        if current_db_version == target_version:
            logger.debug("Database schema is up to date.")
            return
        if current_db_version > target_version:
            raise SchemaError(
                f"DB schema version ({current_db_version}) is newer than supported ({target_version}).")
        if current_db_version == 0:
            self._apply_schema_v1(conn)
            final_db_version = self._get_db_version(conn)
            if final_db_version != target_version:
                raise SchemaError(
                    f"Schema applied, but final DB version is {final_db_version}, expected {target_version}.")
            return
        raise SchemaError(f"Migration needed from {current_db_version} to {target_version}, but no path defined.")

    # --- Internal Helpers ---
    def _get_current_utc_timestamp_str(self) -> str:
        return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        data = {key: row[key] for key in row.keys() if key in User.model_fields}
        data["pending_sync"] = bool(data.get("pending_sync"))
        data["pending_delete"] = bool(data.get("pending_delete"))
        return User(**data)

    def _row_params(self, user: User, *, pending_sync: bool, pending_delete: bool) -> tuple:
        return (
            (user.id,)
            + tuple(getattr(user, name) for name in BUSINESS_FIELDS)
            + (int(pending_sync), int(pending_delete), self._get_current_utc_timestamp_str(), self.client_id)
        )

    @staticmethod
    def _validate_user(user: User):
        if not isinstance(user, User):
            raise InputError(f"Expected a User, got {type(user).__name__}.")
        if not user.id or not user.id.strip():
            raise InputError("User id cannot be empty.")
        if user.pending_delete and not user.pending_sync:
            raise InputError(f"User '{user.id}' is marked pending_delete without pending_sync.")

    def _upsert_sql(self, *, only_if_clean: bool) -> str:
        columns = ", ".join(self._COLUMNS)
        placeholders = ", ".join("?" for _ in self._COLUMNS)
        assignments = ", ".join(f"{col} = excluded.{col}" for col in self._COLUMNS if col != "id")
        sql = f"INSERT INTO users ({columns}) VALUES ({placeholders}) ON CONFLICT(id) DO UPDATE SET {assignments}"
        if only_if_clean:
            sql += " WHERE users.pending_sync = 0"
        return sql

    # --- Change Listeners ---
    def add_change_listener(self, listener: ChangeListener):
        with self._listeners_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener):
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify_listeners(self, operation: str, user_ids: Iterable[str]):
        ids = list(user_ids)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(operation, ids)
            except Exception as e:
                logger.error(f"Change listener {listener!r} failed on '{operation}': {e}", exc_info=True)

    def watch_active_users(self) -> ActiveUsersStream:
        """Live view of the active (non-tombstoned) users; see `ActiveUsersStream`."""
        return ActiveUsersStream(self)

    # --- Reads ---
    def get_active_users(self) -> List[User]:
        cursor = self.execute_query("SELECT * FROM users WHERE pending_delete = 0 ORDER BY id")
        return [self._row_to_user(row) for row in cursor.fetchall()]

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        cursor = self.execute_query("SELECT * FROM users WHERE id = ?", (user_id,))
        row = cursor.fetchone()
        return self._row_to_user(row) if row else None

    def get_users_to_sync(self) -> List[User]:
        """Rows created or modified locally that still need to be pushed."""
        cursor = self.execute_query(
            "SELECT * FROM users WHERE pending_sync = 1 AND pending_delete = 0 ORDER BY id")
        return [self._row_to_user(row) for row in cursor.fetchall()]

    def get_users_to_delete(self) -> List[User]:
        """Tombstones waiting for their remote delete."""
        cursor = self.execute_query("SELECT * FROM users WHERE pending_delete = 1 ORDER BY id")
        return [self._row_to_user(row) for row in cursor.fetchall()]

    def get_all_ids(self) -> Set[str]:
        cursor = self.execute_query("SELECT id FROM users")
        return {row['id'] for row in cursor.fetchall()}

    def count_users(self) -> Dict[str, int]:
        cursor = self.execute_query("""
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN pending_delete = 0 THEN 1 ELSE 0 END), 0) AS active,
                   COALESCE(SUM(CASE WHEN pending_sync = 1 AND pending_delete = 0 THEN 1 ELSE 0 END), 0) AS dirty,
                   COALESCE(SUM(CASE WHEN pending_delete = 1 THEN 1 ELSE 0 END), 0) AS tombstones
            FROM users
        """)
        row = cursor.fetchone()
        return {key: int(row[key]) for key in ("total", "active", "dirty", "tombstones")}

    # --- Single-row Writes ---
    def insert_user(self, user: User):
        """Inserts a user. A colliding id replaces the stored row."""
        self._validate_user(user)
        params = self._row_params(user, pending_sync=user.pending_sync, pending_delete=user.pending_delete)
        with self.transaction() as conn:
            conn.execute(self._upsert_sql(only_if_clean=False), params)
        logger.debug(f"Inserted user '{user.id}' (pending_sync={user.pending_sync}, pending_delete={user.pending_delete})")
        self._notify_listeners("insert", [user.id])

    def update_user(self, user: User):
        """Replaces an existing row. Raises RecordNotFoundError if the id is unknown."""
        self._validate_user(user)
        assignments = ", ".join(f"{col} = ?" for col in self._COLUMNS if col != "id")
        params = self._row_params(user, pending_sync=user.pending_sync, pending_delete=user.pending_delete)
        with self.transaction() as conn:
            cursor = conn.execute(f"UPDATE users SET {assignments} WHERE id = ?", params[1:] + (user.id,))
            if cursor.rowcount == 0:
                raise RecordNotFoundError(identifier=user.id)
        logger.debug(f"Updated user '{user.id}' (pending_sync={user.pending_sync}, pending_delete={user.pending_delete})")
        self._notify_listeners("update", [user.id])

    def physical_delete_user(self, user: User) -> bool:
        """Removes the row for good. Returns False if there was nothing to delete."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user.id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.debug(f"Physically deleted user '{user.id}'")
            self._notify_listeners("delete", [user.id])
        return deleted

    def delete_all_users(self) -> int:
        with self.transaction() as conn:
            ids = [row['id'] for row in conn.execute("SELECT id FROM users").fetchall()]
            conn.execute("DELETE FROM users")
        logger.info(f"Deleted all {len(ids)} users from {self.db_path_str}")
        if ids:
            self._notify_listeners("delete", ids)
        return len(ids)

    # --- Batch Writes (download phase) ---
    def bulk_update_users(self, users: List[User]) -> int:
        """
        Overwrites known rows with server data and clears their sync flags, as one batch.
        Rows that are dirty locally are left untouched. Clean rows that already hold the server
        data are not rewritten, so `last_modified` and `client_id` stay as they were.

        Returns the number of clean rows that now match the server.
        """
        if not users:
            return 0
        assignments = ", ".join(f"{col} = ?" for col in self._COLUMNS if col != "id")
        accepted = 0
        changed_ids: List[str] = []
        with self.transaction() as conn:
            for user in users:
                row = conn.execute("SELECT * FROM users WHERE id = ? AND pending_sync = 0", (user.id,)).fetchone()
                if row is None:
                    continue
                accepted += 1
                if all(row[name] == getattr(user, name) for name in BUSINESS_FIELDS):
                    continue
                params = self._row_params(user, pending_sync=False, pending_delete=False)
                conn.execute(f"UPDATE users SET {assignments} WHERE id = ?", params[1:] + (user.id,))
                changed_ids.append(user.id)
        logger.info(f"Bulk update matched {accepted} of {len(users)} server rows, rewrote {len(changed_ids)}.")
        if changed_ids:
            self._notify_listeners("bulk_update", changed_ids)
        return accepted

    def bulk_insert_users(self, users: List[User]) -> int:
        """
        Inserts server rows as clean rows, as one batch. An id that appeared locally in the
        meantime is replaced only if that local row is not dirty. Returns rows written.
        """
        if not users:
            return 0
        params_list = [self._row_params(user, pending_sync=False, pending_delete=False) for user in users]
        with self.transaction():
            cursor = self.execute_many(self._upsert_sql(only_if_clean=True), params_list)
            written = cursor.rowcount if cursor else 0
        logger.info(f"Bulk insert applied {written} of {len(users)} server rows.")
        self._notify_listeners("bulk_insert", [user.id for user in users])
        return written

    # --- Reconciliation Writes (upload phase) ---
    def replace_local_user(self, local_user: User, remote_user: User) -> User:
        """
        Swaps a temporary local row for the record the server created, in one transaction.

        If the temporary row still holds the data that was uploaded, the remote record is
        stored clean. If it was edited (or tombstoned) while the create was in flight, the
        newer local data moves to the server id and stays dirty so the next upload sends it.

        Returns:
            The row as stored under the server id.
        """
        if not remote_user.id:
            raise InputError("Remote user has no id.")
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (local_user.id,)).fetchone()
            current = self._row_to_user(row) if row else None
            if current is not None:
                conn.execute("DELETE FROM users WHERE id = ?", (local_user.id,))
            if (current is None
                    or (current.same_business_data(local_user) and current.pending_delete == local_user.pending_delete)):
                stored = remote_user.model_copy(update={"pending_sync": False, "pending_delete": False})
            else:
                logger.info(f"User '{local_user.id}' changed during upload; keeping local edits under '{remote_user.id}'.")
                stored = current.model_copy(update={"id": remote_user.id, "pending_sync": True})
            conn.execute(
                self._upsert_sql(only_if_clean=False),
                self._row_params(stored, pending_sync=stored.pending_sync, pending_delete=stored.pending_delete))
        logger.debug(f"Replaced local user '{local_user.id}' with server user '{stored.id}'")
        self._notify_listeners("replace", [local_user.id, stored.id])
        return stored

    def mark_synced(self, user: User) -> bool:
        """
        Clears `pending_sync` for a row whose update was accepted by the server, but only if
        the stored row still matches what was uploaded. Returns True if the flag was cleared.
        """
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user.id,)).fetchone()
            if row is None:
                return False
            current = self._row_to_user(row)
            if current.pending_delete or not current.same_business_data(user):
                logger.info(f"User '{user.id}' changed during upload; leaving it pending.")
                return False
            conn.execute(
                "UPDATE users SET pending_sync = 0, last_modified = ?, client_id = ? WHERE id = ?",
                (self._get_current_utc_timestamp_str(), self.client_id, user.id))
        self._notify_listeners("update", [user.id])
        return True

#
# End of Users_DB.py
#######################################################################################################################
