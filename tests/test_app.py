"""Tests for page-session wiring and observability hooks."""

import pytest

from petshare.api import AsyncBackendClient, RemoteOperationError
from petshare.app import PetShareApp
from petshare.logging import get_log_context
from petshare.metrics import generate_metrics_output
from petshare.models import StoreError
from petshare.session import IdentityClient


def test_default_wiring_uses_http_client():
    app = PetShareApp()

    assert isinstance(app.client, AsyncBackendClient)
    assert isinstance(app.identity, IdentityClient)
    assert app.identity.client is app.client
    assert app.photos.bucket == "pet_photos"
    assert app.avatars.bucket == "avatars"


def test_custom_client_needs_identity(backend):
    with pytest.raises(ValueError, match="identity provider is required"):
        PetShareApp(client=backend)


@pytest.mark.asyncio
async def test_lifecycle_sets_and_clears_log_context(backend, identity):
    async with PetShareApp(client=backend, identity=identity) as app:
        assert get_log_context()["session_id"] == app.session_id
        assert not app.session.is_authenticated

    assert get_log_context()["session_id"] is None


@pytest.mark.asyncio
async def test_close_stops_following_identity(backend, identity, user_a):
    app = PetShareApp(client=backend, identity=identity)
    await app.start()
    await app.close()

    identity.sign_in(user_a)

    assert app.session.user is None


@pytest.mark.asyncio
async def test_start_survives_identity_outage(backend, identity, user_a, mocker):
    identity.sign_in(user_a)
    mocker.patch.object(
        identity,
        "get_user",
        side_effect=RemoteOperationError("get user", StoreError(code="network_error", message="ConnectError")),
    )

    async with PetShareApp(client=backend, identity=identity) as app:
        assert not app.session.is_authenticated
        assert get_log_context()["user_id"] is None


@pytest.mark.asyncio
async def test_metrics_exposition(app_a, backend):
    backend.seed("pet_posts", profile_id="user-a", pet_name="Rex", photo_url="http://img/1", caption="x")
    gallery = app_a.gallery()
    await gallery.mount()

    output = generate_metrics_output().decode()

    assert "cache_fetches_total" in output
    assert "cache_subscribers" in output
