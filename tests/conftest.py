"""Pytest configuration and shared fixtures for PetShare tests."""

import os

# Settings are read at import time; these must be set before importing petshare
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key-0123456789abcdef")
os.environ.setdefault("SUPABASE_URL", "http://fake.local")
os.environ["ENVIRONMENT"] = "testing"

import asyncio  # noqa: E402
import copy  # noqa: E402
import sys  # noqa: E402
import uuid  # noqa: E402
from collections.abc import Callable, Mapping  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from loguru import logger  # noqa: E402

from petshare.api import StoreResponse  # noqa: E402
from petshare.app import PetShareApp  # noqa: E402
from petshare.config import SortDirection  # noqa: E402
from petshare.models import AuthUser, SelectedFile, StoreError  # noqa: E402
from petshare.notifications import Notifier  # noqa: E402
from petshare.views import Router  # noqa: E402

# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


# =============================================================================
# Fake Backend
# =============================================================================

OWNED_TABLES = {"pet_posts": "profile_id", "post_reactions": "profile_id", "post_comments": "profile_id"}
BASE_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeBackend:
    """In-memory stand-in for the backend project.

    Row rules mirror the hosted ones: the bearer token identifies the caller
    (tokens are user ids here), inserts into owned tables must carry the
    caller's id, deletes only see the caller's rows and profile upserts are
    limited to the caller's own row with unique usernames.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            "pet_posts": [],
            "post_reactions": [],
            "post_comments": [],
            "profiles": [],
        }
        self.objects: dict[tuple[str, str], bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.current_user: str | None = None
        self._failures: dict[tuple[str, str], StoreError] = {}
        self._clock = 0

    # ----- test helpers -----

    def fail(self, operation: str, target: str, code: str = "500", message: str = "boom") -> None:
        """Make every later ``operation`` on ``target`` fail."""
        self._failures[(operation, target)] = StoreError(code=code, message=message)

    def heal(self) -> None:
        self._failures.clear()

    def count(self, operation: str, target: str | None = None) -> int:
        return sum(1 for op, t in self.calls if op == operation and (target is None or t == target))

    def _next_time(self) -> str:
        self._clock += 1
        return (BASE_TIME + timedelta(seconds=self._clock)).isoformat()

    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        row.setdefault("id", uuid.uuid4().hex)
        if table != "profiles" and table != "post_reactions":
            row.setdefault("created_at", self._next_time())
        self.tables[table].append(row)
        return row

    async def _enter(self, operation: str, target: str) -> StoreError | None:
        # yield to the loop like a real network call would
        await asyncio.sleep(0)
        self.calls.append((operation, target))
        return self._failures.get((operation, target))

    def _with_author(self, row: dict[str, Any]) -> dict[str, Any]:
        author = next((p for p in self.tables["profiles"] if p["id"] == row.get("profile_id")), None)
        row = dict(row)
        row["profiles"] = {"username": author["username"], "avatar_url": author.get("avatar_url")} if author else None
        return row

    @staticmethod
    def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
        return all(str(row.get(column)) == str(value) for column, value in (filters or {}).items())

    # ----- IBackendClient -----

    def set_access_token(self, token: str | None) -> None:
        self.current_user = token

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        filters: Mapping[str, Any] | None = None,
        order: tuple[str, SortDirection] | None = None,
        single: bool = False,
    ) -> StoreResponse:
        if error := await self._enter("select", table):
            return StoreResponse(error=error)

        rows = [copy.deepcopy(r) for r in self.tables[table] if self._matches(r, filters)]
        if "profiles(" in columns:
            rows = [self._with_author(r) for r in rows]
        if order:
            column, direction = order
            rows.sort(key=lambda r: r.get(column) or "", reverse=direction == SortDirection.DESC)
        if single:
            if len(rows) != 1:
                return StoreResponse(
                    error=StoreError(code="PGRST116", message="JSON object requested, multiple (or no) rows returned")
                )
            return StoreResponse(data=rows[0])
        return StoreResponse(data=rows)

    async def insert(self, table: str, rows: dict[str, Any] | list[dict[str, Any]]) -> StoreResponse:
        if error := await self._enter("insert", table):
            return StoreResponse(error=error)

        stored = []
        for row in rows if isinstance(rows, list) else [rows]:
            owner_column = OWNED_TABLES.get(table)
            if owner_column and row.get(owner_column) != self.current_user:
                return StoreResponse(
                    error=StoreError(code="42501", message="new row violates row-level security policy")
                )
            row = {"id": uuid.uuid4().hex, **row}
            if table != "post_reactions":
                row["created_at"] = self._next_time()
            self.tables[table].append(row)
            stored.append(copy.deepcopy(row))
        return StoreResponse(data=stored)

    async def upsert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        *,
        on_conflict: str = "id",
    ) -> StoreResponse:
        if error := await self._enter("upsert", table):
            return StoreResponse(error=error)

        stored = []
        for row in rows if isinstance(rows, list) else [rows]:
            if table == "profiles" and row.get("id") != self.current_user:
                return StoreResponse(
                    error=StoreError(code="42501", message="new row violates row-level security policy")
                )
            if any(
                r.get("username") == row.get("username") and r[on_conflict] != row[on_conflict]
                for r in self.tables[table]
            ):
                return StoreResponse(
                    error=StoreError(
                        code="23505",
                        message='duplicate key value violates unique constraint "profiles_username_key"',
                    )
                )
            existing = next((r for r in self.tables[table] if r[on_conflict] == row[on_conflict]), None)
            if existing is not None:
                existing.update(row)
            else:
                existing = dict(row)
                self.tables[table].append(existing)
            stored.append(copy.deepcopy(existing))
        return StoreResponse(data=stored)

    async def delete(self, table: str, *, filters: Mapping[str, Any]) -> StoreResponse:
        if error := await self._enter("delete", table):
            return StoreResponse(error=error)

        owner_column = OWNED_TABLES.get(table)
        deleted = [
            r
            for r in self.tables[table]
            if self._matches(r, filters) and (owner_column is None or r.get(owner_column) == self.current_user)
        ]
        self.tables[table] = [r for r in self.tables[table] if r not in deleted]
        return StoreResponse(data=copy.deepcopy(deleted))

    async def upload_object(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str,
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> StoreResponse:
        if error := await self._enter("upload", bucket):
            return StoreResponse(error=error)
        if (bucket, path) in self.objects and not upsert:
            return StoreResponse(error=StoreError(code="Duplicate", message="The resource already exists"))
        self.objects[(bucket, path)] = content
        return StoreResponse(data=path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"http://fake.local/storage/v1/object/public/{bucket}/{path}"


class FakeIdentity:
    """In-memory identity provider driving a ``FakeBackend``'s token."""

    def __init__(self, backend: FakeBackend):
        self.backend = backend
        self.user: AuthUser | None = None
        self._callbacks: list[Callable[[str, AuthUser | None], None]] = []

    async def get_user(self) -> AuthUser | None:
        return self.user

    def on_session_change(self, callback: Callable[[str, AuthUser | None], None]) -> Callable[[], None]:
        self._callbacks.append(callback)
        return lambda: self._callbacks.remove(callback)

    def sign_in(self, user: AuthUser) -> None:
        self.user = user
        self.backend.set_access_token(user.id)
        for callback in list(self._callbacks):
            callback("SIGNED_IN", user)

    def sign_out(self) -> None:
        self.user = None
        self.backend.set_access_token(None)
        for callback in list(self._callbacks):
            callback("SIGNED_OUT", None)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def identity(backend: FakeBackend) -> FakeIdentity:
    return FakeIdentity(backend)


@pytest.fixture
def user_a() -> AuthUser:
    return AuthUser(id="user-a", email="a@example.com")


@pytest.fixture
def user_b() -> AuthUser:
    return AuthUser(id="user-b", email="b@example.com")


@pytest.fixture
def profiles(backend: FakeBackend, user_a: AuthUser, user_b: AuthUser) -> dict[str, dict[str, Any]]:
    """Profiles for both test users."""
    return {
        "a": backend.seed("profiles", id=user_a.id, username="alice", avatar_url=None),
        "b": backend.seed("profiles", id=user_b.id, username="bob", avatar_url="http://img/bob.png"),
    }


@pytest.fixture
def image() -> SelectedFile:
    return SelectedFile(name="biscuit.jpg", content=b"\xff\xd8\xff\xe0fake-jpeg", content_type="image/jpeg")


@pytest_asyncio.fixture
async def app(backend: FakeBackend, identity: FakeIdentity):
    """Started page session over the fake backend (signed out)."""
    page = PetShareApp(client=backend, identity=identity, notifier=Notifier(), router=Router())
    await page.start()
    yield page
    await page.close()


@pytest_asyncio.fixture
async def app_a(app: PetShareApp, identity: FakeIdentity, user_a: AuthUser, profiles):
    """Page session signed in as user A."""
    identity.sign_in(user_a)
    return app
