# Tests/conftest.py
#
# Shared fixtures: in-memory/file users databases, a recording fake of the remote user service,
# and an isolated config file so no test touches ~/.config.
#
# Imports
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
import pytest
#
# Local imports
from hybrid_users import config
from hybrid_users.DB.Users_DB import UsersDatabase
from hybrid_users.models import User
from hybrid_users.users_api import NotFoundError
#
############################################################################################################################
#
# Functions:


class FakeUsersRemote:
    """
    In-memory stand-in for UsersAPIClient.

    Records every call as (method, id) in `calls`. Failures are injected through `fail_on`,
    keyed by (method, id) or (method, None) for every call of that method. `on_call` is an
    optional coroutine run mid-request, used to simulate local edits while a request is in flight.
    """
    base_url = "https://users.test/api"

    def __init__(self):
        self.users: Dict[str, User] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.fail_on: Dict[Tuple[str, Optional[str]], Exception] = {}
        self.next_id = 1
        self.create_id_override: Optional[str] = None
        self.on_call: Optional[Callable[[str, Optional[str]], Awaitable[None]]] = None
        self.closed = False

    def seed(self, *users: User):
        for user in users:
            self.users[user.id] = user.model_copy(update={"pending_sync": False, "pending_delete": False})
        numeric = [int(uid) for uid in self.users if uid.isdigit()]
        if numeric:
            self.next_id = max(max(numeric) + 1, self.next_id)

    def calls_to(self, method: str) -> List[Optional[str]]:
        return [user_id for name, user_id in self.calls if name == method]

    async def _enter(self, method: str, user_id: Optional[str]):
        self.calls.append((method, user_id))
        error = self.fail_on.get((method, user_id)) or self.fail_on.get((method, None))
        if error is not None:
            raise error
        if self.on_call is not None:
            await self.on_call(method, user_id)

    async def get_all_users(self) -> List[User]:
        await self._enter("get_all_users", None)
        return [user.model_copy() for user in self.users.values()]

    async def create_user(self, user: User) -> User:
        await self._enter("create_user", user.id)
        if self.create_id_override is not None:
            new_id = self.create_id_override
        else:
            new_id = str(self.next_id)
            self.next_id += 1
        created = user.model_copy(update={"id": new_id, "pending_sync": False, "pending_delete": False})
        if new_id:
            self.users[new_id] = created
        return created.model_copy()

    async def update_user(self, user_id: str, user: User) -> User:
        await self._enter("update_user", user_id)
        if user_id not in self.users:
            raise NotFoundError(f"PUT /users/{user_id}: Not found")
        updated = user.model_copy(update={"id": user_id, "pending_sync": False, "pending_delete": False})
        self.users[user_id] = updated
        return updated.model_copy()

    async def delete_user(self, user_id: str) -> User:
        await self._enter("delete_user", user_id)
        if user_id not in self.users:
            raise NotFoundError(f"DELETE /users/{user_id}: Not found")
        return self.users.pop(user_id)

    async def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Points the config layer at a throwaway file for every test."""
    for env_var in config.ENV_OVERRIDES:
        monkeypatch.delenv(env_var, raising=False)
    config_path = tmp_path / "config" / "config.toml"
    config.load_settings(force_reload=True, config_path=config_path)
    yield config_path
    config.load_settings(force_reload=True, config_path=config_path)


@pytest.fixture
def client_id():
    return "test_client"


@pytest.fixture
def memory_db(client_id):
    db = UsersDatabase(":memory:", client_id)
    yield db
    db.close_connection()


@pytest.fixture
def file_db_path(tmp_path):
    return tmp_path / "users_test.db"


@pytest.fixture
def file_db(file_db_path, client_id):
    db = UsersDatabase(file_db_path, client_id)
    yield db
    db.close_connection()


@pytest.fixture
def fake_remote():
    return FakeUsersRemote()


@pytest.fixture
def make_user():
    """Factory for users with readable defaults; keyword arguments override fields."""
    def _make(user_id: str = "", **overrides) -> User:
        data = {
            "id": user_id,
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": f"ada{user_id}@example.com",
            "age": 36,
            "user_name": "ada",
            "position_title": "Analyst",
            "image": "https://example.com/ada.png",
        }
        data.update(overrides)
        return User(**data)
    return _make

#
# End of Tests/conftest.py
############################################################################################################################
