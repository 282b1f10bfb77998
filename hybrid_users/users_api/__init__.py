# hybrid_users/users_api/__init__.py
from .client import UsersAPIClient
from .exceptions import (
    RemoteError, APIConnectionError, APIRequestError,
    APIResponseError, NotFoundError
)
from .schemas import RemoteUser, parse_user_list

__all__ = [
    "UsersAPIClient",
    "RemoteError", "APIConnectionError", "APIRequestError",
    "APIResponseError", "NotFoundError",
    "RemoteUser", "parse_user_list",
]
