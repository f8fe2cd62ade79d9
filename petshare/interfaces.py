"""Protocol interfaces for dependency injection.

The data-access layer, session context and views depend on these
structural contracts rather than on concrete classes, so tests can hand in
in-memory fakes and alternative backends can be swapped in without
inheritance.

Example:
    >>> from petshare.interfaces import IBackendClient
    >>> isinstance(AsyncBackendClient(), IBackendClient)
    True
"""

from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from petshare.api import StoreResponse
from petshare.config import SortDirection
from petshare.models import AuthUser


@runtime_checkable
class IBackendClient(Protocol):
    """Remote data store and object storage boundary.

    Every call returns a ``StoreResponse``: data on success, a structured
    error otherwise. Implementations must not raise for store-side failures.
    """

    def set_access_token(self, token: str | None) -> None:
        """Forward the signed-in identity's token on later calls."""
        ...

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        filters: Mapping[str, Any] | None = None,
        order: tuple[str, SortDirection] | None = None,
        single: bool = False,
    ) -> StoreResponse:
        """Select rows with optional join columns, equality filters and sort."""
        ...

    async def insert(self, table: str, rows: dict[str, Any] | list[dict[str, Any]]) -> StoreResponse:
        """Insert rows and return them."""
        ...

    async def upsert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        *,
        on_conflict: str = "id",
    ) -> StoreResponse:
        """Insert or update rows keyed by ``on_conflict``."""
        ...

    async def delete(self, table: str, *, filters: Mapping[str, Any]) -> StoreResponse:
        """Delete rows matching equality filters and return the deleted rows."""
        ...

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
        """Upload bytes; data is the stored path."""
        ...

    def public_url(self, bucket: str, path: str) -> str:
        """Derive the public URL of a stored object."""
        ...


@runtime_checkable
class IIdentityProvider(Protocol):
    """Identity boundary.

    ``on_session_change`` delivers every later sign-in/sign-out exactly once
    until the returned callable is invoked to unsubscribe.
    """

    async def get_user(self) -> AuthUser | None:
        """Return the current identity, or None."""
        ...

    def on_session_change(self, callback: Callable[[str, AuthUser | None], None]) -> Callable[[], None]:
        """Register ``callback(event, user)``; returns the unsubscribe function."""
        ...


# Type aliases
QueryKey = tuple[str, ...]
"""Query-cache key; the first element is a ``QueryTag``."""
