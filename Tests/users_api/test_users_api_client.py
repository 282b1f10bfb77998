# Tests/users_api/test_users_api_client.py
# Description: UsersAPIClient request shapes, wire mapping and error translation, via httpx.MockTransport.
#
# Imports
import json
import httpx
import pytest
#
# Local imports
from hybrid_users.models import User
from hybrid_users.users_api import (
    UsersAPIClient,
    RemoteUser,
    parse_user_list,
    APIConnectionError,
    APIRequestError,
    APIResponseError,
    NotFoundError,
    RemoteError,
)
#
#######################################################################################################################
#
# Functions:

BASE_URL = "https://users.test/api"

WIRE_USER = {
    "id": "42",
    "firstName": "Grace",
    "lastName": "Hopper",
    "email": "grace@example.com",
    "age": 85,
    "userName": "ghopper",
    "positionTitle": "Rear Admiral",
    "imagen": "https://example.com/grace.png",
}


def make_client(handler) -> UsersAPIClient:
    return UsersAPIClient(BASE_URL, resource="users", transport=httpx.MockTransport(handler))


@pytest.fixture
def recorded():
    return []


def json_handler(recorded, status_code=200, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        recorded.append(request)
        return httpx.Response(status_code, json=body)
    return handler


class TestWireSchema:
    def test_remote_user_maps_camel_case_fields(self):
        user = RemoteUser.model_validate(WIRE_USER).to_user()
        assert user.id == "42"
        assert user.first_name == "Grace"
        assert user.position_title == "Rear Admiral"
        assert user.image == "https://example.com/grace.png"
        assert user.pending_sync is False
        assert user.pending_delete is False

    def test_local_flags_are_ignored_on_the_way_in(self):
        payload = dict(WIRE_USER, pendingSync=True, pendingDelete=True)
        user = RemoteUser.model_validate(payload).to_user()
        assert user.pending_sync is False
        assert user.pending_delete is False

    def test_numeric_id_and_missing_age_are_coerced(self):
        payload = dict(WIRE_USER, id=7, age=None)
        user = RemoteUser.model_validate(payload).to_user()
        assert user.id == "7"
        assert user.age == 0

    def test_payload_never_contains_local_flags(self):
        user = User(id="local_1", first_name="A", pending_sync=True, pending_delete=True)
        payload = RemoteUser.from_user(user).to_payload(include_id=False)
        assert "id" not in payload
        assert "pendingSync" not in payload and "pending_sync" not in payload
        assert payload["firstName"] == "A"

    def test_parse_user_list_accepts_wrapped_lists(self):
        assert len(parse_user_list([WIRE_USER])) == 1
        assert len(parse_user_list({"items": [WIRE_USER, WIRE_USER]})) == 2
        with pytest.raises(ValueError):
            parse_user_list("nope")


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_all_users(self, recorded):
        client = make_client(json_handler(recorded, body=[WIRE_USER, dict(WIRE_USER, id="43")]))
        async with client:
            users = await client.get_all_users()
        assert [u.id for u in users] == ["42", "43"]
        assert recorded[0].method == "GET"
        assert recorded[0].url == httpx.URL(f"{BASE_URL}/users")

    @pytest.mark.asyncio
    async def test_create_user_posts_without_id(self, recorded):
        client = make_client(json_handler(recorded, status_code=201, body=WIRE_USER))
        local = User(id="local_abc", first_name="Grace", last_name="Hopper", age=85, pending_sync=True)
        async with client:
            created = await client.create_user(local)
        request = recorded[0]
        body = json.loads(request.content)
        assert request.method == "POST"
        assert request.url.path == "/api/users"
        assert "id" not in body
        assert body["firstName"] == "Grace"
        assert created.id == "42"
        assert created.pending_sync is False

    @pytest.mark.asyncio
    async def test_update_user_puts_to_item_path(self, recorded):
        client = make_client(json_handler(recorded, body=WIRE_USER))
        async with client:
            await client.update_user("42", RemoteUser.model_validate(WIRE_USER).to_user())
        assert recorded[0].method == "PUT"
        assert recorded[0].url.path == "/api/users/42"
        assert json.loads(recorded[0].content)["id"] == "42"

    @pytest.mark.asyncio
    async def test_delete_user(self, recorded):
        client = make_client(json_handler(recorded, body=WIRE_USER))
        async with client:
            deleted = await client.delete_user("42")
        assert recorded[0].method == "DELETE"
        assert recorded[0].url.path == "/api/users/42"
        assert deleted.id == "42"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [httpx.Response(204), httpx.Response(200, content=b"")])
    async def test_delete_without_body_succeeds(self, recorded, response):
        def handler(request: httpx.Request) -> httpx.Response:
            recorded.append(request)
            return response

        client = make_client(handler)
        async with client:
            assert await client.delete_user("42") is None
        assert recorded[0].method == "DELETE"

    @pytest.mark.asyncio
    async def test_empty_listing_body_is_a_response_error(self):
        client = make_client(lambda request: httpx.Response(200, content=b""))
        async with client:
            with pytest.raises(APIResponseError):
                await client.get_all_users()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = make_client(json_handler([], body=[]))
        await client.get_all_users()
        await client.close()
        await client.close()


class TestErrorTranslation:
    @pytest.mark.asyncio
    async def test_404_raises_not_found(self, recorded):
        client = make_client(json_handler(recorded, status_code=404, body="Not found"))
        async with client:
            with pytest.raises(NotFoundError) as exc_info:
                await client.delete_user("7")
        assert exc_info.value.status_code == 404
        assert isinstance(exc_info.value, APIResponseError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 422])
    async def test_validation_rejections(self, recorded, status_code):
        client = make_client(json_handler(recorded, status_code=status_code, body={"message": "email is invalid"}))
        async with client:
            with pytest.raises(APIRequestError, match="email is invalid"):
                await client.create_user(User(first_name="x"))

    @pytest.mark.asyncio
    async def test_server_error(self, recorded):
        client = make_client(json_handler(recorded, status_code=500, body={"detail": "kaput"}))
        async with client:
            with pytest.raises(APIResponseError) as exc_info:
                await client.get_all_users()
        assert exc_info.value.status_code == 500
        assert "kaput" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        async with client:
            with pytest.raises(APIConnectionError):
                await client.get_all_users()

    @pytest.mark.asyncio
    async def test_timeout_is_a_connection_error(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        client = make_client(handler)
        async with client:
            with pytest.raises(APIConnectionError):
                await client.get_all_users()

    @pytest.mark.asyncio
    async def test_undecodable_body(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))
        async with client:
            with pytest.raises(APIResponseError, match="decode"):
                await client.get_all_users()

    @pytest.mark.asyncio
    async def test_unexpected_list_shape(self, recorded):
        client = make_client(json_handler(recorded, body={"count": 3}))
        async with client:
            users = await client.get_all_users()
        # A dict without items/data is treated as an empty listing
        assert users == []

    @pytest.mark.asyncio
    async def test_every_failure_is_a_remote_error(self):
        client = make_client(lambda request: httpx.Response(503, text="busy"))
        async with client:
            with pytest.raises(RemoteError):
                await client.update_user("1", User(id="1"))

#
# End of test_users_api_client.py
#######################################################################################################################
