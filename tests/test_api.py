"""Tests for the async HTTP backend client."""

import json

import httpx
import pytest

from petshare.api import NETWORK_ERROR, AsyncBackendClient, RemoteOperationError, parse_error_body
from petshare.config import SortDirection
from petshare.models import SelectedFile, StoreError
from petshare.storage import ObjectStore

ANON = "anon-key-0123456789abcdefghij"


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, response: httpx.Response | Exception):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def make_client(response: httpx.Response | Exception) -> tuple[AsyncBackendClient, Recorder]:
    recorder = Recorder(response)
    client = AsyncBackendClient(url="http://fake.local/", anon_key=ANON, transport=httpx.MockTransport(recorder))
    return client, recorder


# =============================================================================
# Relational API
# =============================================================================


@pytest.mark.asyncio
async def test_select_builds_postgrest_query():
    client, recorder = make_client(httpx.Response(200, json=[{"id": "1"}]))

    async with client:
        response = await client.select(
            "pet_posts",
            "*, profiles(username, avatar_url)",
            filters={"profile_id": "user-a"},
            order=("created_at", SortDirection.DESC),
        )

    assert response.ok
    assert response.data == [{"id": "1"}]
    request = recorder.last
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/pet_posts"
    assert request.url.params["select"] == "*, profiles(username, avatar_url)"
    assert request.url.params["profile_id"] == "eq.user-a"
    assert request.url.params["order"] == "created_at.desc"
    assert request.headers["apikey"] == ANON
    assert request.headers["authorization"] == f"Bearer {ANON}"


@pytest.mark.asyncio
async def test_single_select_asks_for_object():
    client, recorder = make_client(httpx.Response(200, json={"id": "1"}))

    response = await client.select("profiles", filters={"id": "1"}, single=True)
    await client.close()

    assert response.data == {"id": "1"}
    assert recorder.last.headers["accept"] == "application/vnd.pgrst.object+json"


@pytest.mark.asyncio
async def test_access_token_replaces_anon_bearer():
    client, recorder = make_client(httpx.Response(201, json=[{"id": "r1"}]))
    client.set_access_token("user-token")

    await client.insert("post_reactions", {"post_id": "p1", "profile_id": "u1"})
    await client.close()

    request = recorder.last
    assert request.method == "POST"
    assert request.headers["authorization"] == "Bearer user-token"
    assert request.headers["prefer"] == "return=representation"
    assert json.loads(request.content) == {"post_id": "p1", "profile_id": "u1"}


@pytest.mark.asyncio
async def test_upsert_merges_on_conflict():
    client, recorder = make_client(httpx.Response(201, json=[{"id": "u1", "username": "alice"}]))

    await client.upsert("profiles", {"id": "u1", "username": "alice"})
    await client.close()

    request = recorder.last
    assert request.url.params["on_conflict"] == "id"
    assert request.headers["prefer"] == "resolution=merge-duplicates,return=representation"


@pytest.mark.asyncio
async def test_delete_requires_filters():
    client, _ = make_client(httpx.Response(200, json=[]))

    with pytest.raises(ValueError):
        await client.delete("pet_posts", filters={})
    await client.close()


@pytest.mark.asyncio
async def test_delete_filters_and_returns_rows():
    client, recorder = make_client(httpx.Response(200, json=[{"id": "p1"}]))

    response = await client.delete("pet_posts", filters={"id": "p1"})
    await client.close()

    assert response.data == [{"id": "p1"}]
    assert recorder.last.method == "DELETE"
    assert recorder.last.url.params["id"] == "eq.p1"


@pytest.mark.asyncio
async def test_postgrest_error_is_structured():
    body = {"code": "23505", "message": "duplicate key", "details": "Key (username)=(bob) exists.", "hint": None}
    client, _ = make_client(httpx.Response(409, json=body))

    response = await client.upsert("profiles", {"id": "u1", "username": "bob"})
    await client.close()

    assert not response.ok
    assert response.error.code == "23505"
    assert response.error.details == "Key (username)=(bob) exists."
    assert response.error.status == 409


@pytest.mark.asyncio
async def test_transport_failure_becomes_network_error():
    client, _ = make_client(httpx.ConnectError("connection refused"))

    response = await client.select("pet_posts")
    await client.close()

    assert response.error.code == NETWORK_ERROR
    assert "connection refused" in response.error.message


@pytest.mark.asyncio
async def test_empty_body_yields_none():
    client, _ = make_client(httpx.Response(204))

    response = await client.delete("post_reactions", filters={"post_id": "p1"})
    await client.close()

    assert response.ok
    assert response.data is None


# =============================================================================
# Error Parsing
# =============================================================================


def test_parse_storage_error():
    response = httpx.Response(400, json={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"})

    error = parse_error_body(response)

    assert error.code == "409"
    assert error.message == "The resource already exists"


def test_parse_auth_error():
    response = httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})

    error = parse_error_body(response)

    assert error.code == "invalid_grant"
    assert error.message == "Invalid login credentials"


def test_parse_auth_error_prefers_named_code():
    response = httpx.Response(400, json={"code": 400, "error_code": "invalid_credentials", "msg": "Invalid login credentials"})

    error = parse_error_body(response)

    assert error.code == "invalid_credentials"
    assert error.message == "Invalid login credentials"
    assert error.status == 400


def test_parse_non_json_error():
    response = httpx.Response(502, text="Bad Gateway")

    error = parse_error_body(response)

    assert error.code == "502"
    assert error.message == "Bad Gateway"


def test_remote_operation_error_carries_code():
    error = RemoteOperationError("upsert profiles", StoreError(code="23505", message="duplicate"))

    assert error.code == "23505"
    assert error.is_unique_violation
    assert "upsert profiles" in str(error)


# =============================================================================
# Object Storage
# =============================================================================


@pytest.mark.asyncio
async def test_object_store_upload_and_public_url():
    client, recorder = make_client(httpx.Response(200, json={"Key": "pet_photos/x.jpg"}))
    store = ObjectStore(client, "pet_photos", cache_control="3600")
    file = SelectedFile(name="dog.photo.jpg", content=b"jpeg", content_type="image/jpeg")

    url = await store.upload_public(file)
    await client.close()

    request = recorder.last
    path = request.url.path.removeprefix("/storage/v1/object/pet_photos/")
    assert path.endswith(".jpg")
    assert len(path) == len("0" * 32 + ".jpg")
    assert request.headers["content-type"] == "image/jpeg"
    assert request.headers["cache-control"] == "max-age=3600"
    assert request.headers["x-upsert"] == "false"
    assert request.content == b"jpeg"
    assert url == f"http://fake.local/storage/v1/object/public/pet_photos/{path}"


@pytest.mark.asyncio
async def test_object_store_upload_failure_raises():
    client, _ = make_client(httpx.Response(413, json={"statusCode": "413", "error": "Payload too large", "message": "too big"}))
    store = ObjectStore(client, "avatars")
    file = SelectedFile(name="me.png", content=b"png", content_type="image/png")

    with pytest.raises(RemoteOperationError) as exc_info:
        await store.upload(file, prefix="user-a")
    await client.close()

    assert exc_info.value.code == "413"
    assert exc_info.value.operation == "upload to avatars"
