# hybrid_users/users_api/client.py
#
#
# Imports
import json
import logging
from typing import Optional, Dict, Any, List
from urllib.parse import quote
#
# 3rd-party Libraries
import httpx
from pydantic import ValidationError
#
# Local Imports
from hybrid_users.models import User
from .schemas import RemoteUser, parse_user_list
from .exceptions import APIConnectionError, APIRequestError, APIResponseError, NotFoundError
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


class UsersAPIClient:
    """
    Thin async client for the remote user service.

    Every method is a single round trip with no retry; failures are raised as
    `RemoteError` subclasses and the caller decides what to do with the batch.
    """

    def __init__(
        self,
        base_url: str,
        resource: str = "users",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.resource = resource.strip('/')
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _collection_path(self) -> str:
        return f"/{self.resource}"

    def _item_path(self, user_id: str) -> str:
        return f"/{self.resource}/{quote(str(user_id), safe='')}"

    async def _request(self, method: str, endpoint: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"{method} {url}")

        try:
            response = await client.request(method, endpoint, json=json_body)
            response.raise_for_status()  # Raises HTTPStatusError for 4xx/5xx
            if response.status_code == 204 or not response.content:
                return None
            return response.json()
        except httpx.HTTPStatusError as e:
            error_detail = e.response.reason_phrase or str(e)
            response_data = None
            try:
                response_data = e.response.json()
                if isinstance(response_data, dict):
                    detail = response_data.get("detail") or response_data.get("message")
                    if isinstance(detail, list) and detail:
                        error_detail = f"Validation Error: {detail[0].get('msg', '')}"
                    elif isinstance(detail, str):
                        error_detail = detail
                elif isinstance(response_data, str):
                    error_detail = response_data
            except ValueError:
                pass  # Body is not JSON; keep the reason phrase

            status = e.response.status_code
            if status == 404:
                raise NotFoundError(f"{method} {endpoint}: {error_detail}", response_data=response_data) from e
            if status in (400, 422):
                raise APIRequestError(f"Validation Error: {error_detail}", response_data=response_data) from e
            raise APIResponseError(status, error_detail, response_data=response_data) from e
        except httpx.RequestError as e:  # Covers ConnectError, TimeoutException, etc.
            raise APIConnectionError(f"Connection error to {url}: {e}") from e
        except json.JSONDecodeError as e:
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   response_data={"raw_text": response.text}) from e

    @staticmethod
    def _parse_user(data: Any, endpoint: str) -> User:
        try:
            return RemoteUser.model_validate(data).to_user()
        except ValidationError as e:
            raise APIResponseError(200, f"Unexpected user payload from {endpoint}: {e}",
                                   response_data=data if isinstance(data, dict) else {"raw": data}) from e

    async def get_all_users(self) -> List[User]:
        endpoint = self._collection_path()
        data = await self._request("GET", endpoint)
        try:
            return [remote.to_user() for remote in parse_user_list(data)]
        except (ValidationError, ValueError) as e:
            raise APIResponseError(200, f"Unexpected user list from {endpoint}: {e}") from e

    async def create_user(self, user: User) -> User:
        endpoint = self._collection_path()
        payload = RemoteUser.from_user(user).to_payload(include_id=False)
        data = await self._request("POST", endpoint, json_body=payload)
        return self._parse_user(data, endpoint)

    async def update_user(self, user_id: str, user: User) -> User:
        endpoint = self._item_path(user_id)
        payload = RemoteUser.from_user(user).to_payload(include_id=True)
        data = await self._request("PUT", endpoint, json_body=payload)
        return self._parse_user(data, endpoint)

    async def delete_user(self, user_id: str) -> Optional[User]:
        """Returns the deleted record, or None when the server answers without a body."""
        endpoint = self._item_path(user_id)
        data = await self._request("DELETE", endpoint)
        if data is None:
            return None
        return self._parse_user(data, endpoint)

#
# End of client.py
########################################################################################################################
