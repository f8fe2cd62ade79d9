"""Tests for the identity client and the session context."""

import json

import httpx
import pytest
import pytest_asyncio

from petshare.api import AsyncBackendClient, RemoteOperationError
from petshare.logging import get_log_context
from petshare.models import AuthUser
from petshare.session import AuthChangeEvent, AuthRequiredError, IdentityClient, SessionContext

ANON = "anon-key-0123456789abcdefghij"
USER = {"id": "user-a", "email": "a@example.com"}
SESSION = {"access_token": "token-a", "refresh_token": "r", "expires_in": 3600, "user": USER}


class AuthServer:
    """Minimal identity API behind httpx.MockTransport."""

    def __init__(self):
        self.password = "hunter22"
        self.logout_status = 204
        self.user_status: int | None = None
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        bearer = request.headers.get("authorization", "")

        if path == "/auth/v1/token":
            if json.loads(request.content)["password"] != self.password:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})
            return httpx.Response(200, json=SESSION)
        if path == "/auth/v1/signup":
            return httpx.Response(200, json={"id": "user-new", "email": "new@example.com"})
        if path == "/auth/v1/user":
            if self.user_status is not None:
                return httpx.Response(self.user_status, json={"code": self.user_status, "msg": "unavailable"})
            if bearer != "Bearer token-a":
                return httpx.Response(401, json={"code": 401, "msg": "invalid JWT"})
            return httpx.Response(200, json=USER)
        if path == "/auth/v1/logout":
            return httpx.Response(self.logout_status)
        if path == "/rest/v1/pet_posts":
            return httpx.Response(200, json=[])
        return httpx.Response(404)


@pytest.fixture
def server() -> AuthServer:
    return AuthServer()


@pytest_asyncio.fixture
async def identity(server):
    client = AsyncBackendClient(url="http://fake.local", anon_key=ANON, transport=httpx.MockTransport(server))
    yield IdentityClient(client)
    await client.close()


# =============================================================================
# Identity Client
# =============================================================================


@pytest.mark.asyncio
async def test_get_user_without_session(identity, server):
    assert await identity.get_user() is None
    assert server.requests == []


@pytest.mark.asyncio
async def test_sign_in_sets_token_and_emits(identity, mocker):
    callback = mocker.Mock()
    identity.on_session_change(callback)

    session = await identity.sign_in_with_password("a@example.com", "hunter22")

    assert session.user.id == "user-a"
    assert identity.client.access_token == "token-a"
    callback.assert_called_once_with(AuthChangeEvent.SIGNED_IN.value, session.user)
    assert (await identity.get_user()).email == "a@example.com"


@pytest.mark.asyncio
async def test_sign_in_bad_password(identity, mocker):
    callback = mocker.Mock()
    identity.on_session_change(callback)

    with pytest.raises(RemoteOperationError) as exc_info:
        await identity.sign_in_with_password("a@example.com", "wrong")

    assert exc_info.value.code == "invalid_grant"
    assert identity.session is None
    callback.assert_not_called()


@pytest.mark.asyncio
async def test_rejected_token_reads_as_signed_out(identity, server, mocker):
    await identity.sign_in_with_password("a@example.com", "hunter22")
    identity.client.set_access_token("expired")
    callback = mocker.Mock()
    identity.on_session_change(callback)

    assert await identity.get_user() is None

    assert identity.session is None
    assert identity.client.access_token is None
    callback.assert_called_once_with(AuthChangeEvent.SIGNED_OUT.value, None)

    response = await identity.client.select("pet_posts")
    assert response.error is None
    assert server.requests[-1].headers["authorization"] == f"Bearer {ANON}"


@pytest.mark.asyncio
async def test_get_user_outage_raises(identity, server):
    await identity.sign_in_with_password("a@example.com", "hunter22")
    server.user_status = 503

    with pytest.raises(RemoteOperationError):
        await identity.get_user()

    assert identity.session is not None


@pytest.mark.asyncio
async def test_sign_up_without_session(identity, mocker):
    callback = mocker.Mock()
    identity.on_session_change(callback)

    user = await identity.sign_up("new@example.com", "hunter22")

    assert user.id == "user-new"
    assert identity.session is None
    callback.assert_not_called()


@pytest.mark.asyncio
async def test_sign_out_drops_session_even_if_remote_fails(identity, server, mocker):
    await identity.sign_in_with_password("a@example.com", "hunter22")
    callback = mocker.Mock()
    unsubscribe = identity.on_session_change(callback)
    server.logout_status = 500

    await identity.sign_out()

    assert identity.session is None
    assert identity.client.access_token is None
    callback.assert_called_once_with(AuthChangeEvent.SIGNED_OUT.value, None)

    unsubscribe()
    await identity.sign_out()
    callback.assert_called_once()


# =============================================================================
# Session Context
# =============================================================================


@pytest.mark.asyncio
async def test_context_follows_sign_in_and_out(identity):
    context = SessionContext(identity)
    seen = []
    context.subscribe(seen.append)
    await context.start()
    assert not context.is_authenticated

    await identity.sign_in_with_password("a@example.com", "hunter22")
    assert context.user_id == "user-a"
    assert get_log_context()["user_id"] == "user-a"

    await identity.sign_out()
    assert context.user is None
    assert [u.id if u else None for u in seen] == [None, "user-a", None]

    context.stop()


@pytest.mark.asyncio
async def test_stopped_context_ignores_changes(identity):
    context = SessionContext(identity)
    await context.start()
    context.stop()

    await identity.sign_in_with_password("a@example.com", "hunter22")

    assert context.user is None


@pytest.mark.asyncio
async def test_require_user(identity):
    context = SessionContext(identity)

    with pytest.raises(AuthRequiredError, match="No authenticated user found"):
        context.require_user()

    context._update(AuthUser(id="user-a"))
    assert context.require_user().id == "user-a"


@pytest.mark.asyncio
async def test_current_user_rereads_provider(identity):
    context = SessionContext(identity)
    await context.start()

    with pytest.raises(AuthRequiredError):
        await context.current_user()

    await identity.sign_in_with_password("a@example.com", "hunter22")
    assert (await context.current_user()).id == "user-a"


@pytest.mark.asyncio
async def test_context_starts_signed_out_when_identity_unavailable(identity, server):
    await identity.sign_in_with_password("a@example.com", "hunter22")
    server.user_status = 500
    context = SessionContext(identity)

    await context.start()

    assert context.user is None
    assert not context.is_authenticated
    context.stop()
