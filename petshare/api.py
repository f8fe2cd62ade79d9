"""Async HTTP client for the backend platform.

This module provides one httpx-based client for the three remote surfaces
of the backend project:
- Relational API (PostgREST): select, insert, upsert, delete
- Object storage: upload and public URL derivation
- Identity API: raw requests used by ``petshare.session``

Every store call returns a ``StoreResponse`` holding either data or a
structured ``StoreError``; nothing here raises for a failed call and nothing
here retries. Callers decide what a failure means (see ``petshare.repository``).

Example:
    >>> from petshare.api import AsyncBackendClient
    >>>
    >>> async with AsyncBackendClient() as client:
    ...     response = await client.select("pet_posts", order=("created_at", SortDirection.DESC))
    ...     if response.error:
    ...         print(response.error.code, response.error.message)
"""

import time
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from petshare.config import SortDirection, settings
from petshare.logging import logger
from petshare.metrics import errors_total, remote_operation_duration_seconds, remote_operations_total
from petshare.models import StoreError
from petshare.telemetry import add_span_attributes, get_tracer, set_span_error

tracer = get_tracer(__name__)

# Error code for failures that never reached the store
NETWORK_ERROR = "network_error"

# Postgres code for a unique constraint violation
UNIQUE_VIOLATION = "23505"


# =============================================================================
# Response Envelope and Errors
# =============================================================================


@dataclass(frozen=True)
class StoreResponse:
    """Result of one remote call: exactly one of ``data`` or ``error`` is meaningful."""

    data: Any = None
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RemoteOperationError(Exception):
    """A remote create/read/update/delete failed.

    Carries the store's structured error so callers can branch on the code
    (e.g. ``23505`` for a taken username) while users see a generic message.

    Args:
        operation: Name of the data-access operation that failed
        error: Structured error from the store
    """

    def __init__(self, operation: str, error: StoreError) -> None:
        self.operation = operation
        self.error = error
        super().__init__(f"{operation} failed [{error.code}]: {error.message}")

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def is_unique_violation(self) -> bool:
        return self.error.code == UNIQUE_VIOLATION


def parse_error_body(response: httpx.Response) -> StoreError:
    """Build a ``StoreError`` from an error response of any backend surface.

    PostgREST sends ``{code, message, details, hint}``; storage sends
    ``{statusCode, error, message}``; the identity API sends ``{code|error,
    msg|error_description}`` and, in newer versions, a named ``error_code``
    next to a numeric ``code``; the named code wins. Anything unparseable
    falls back to the status.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if not isinstance(body, dict):
        text = response.text[:200] if response.content else response.reason_phrase
        return StoreError(code=str(response.status_code), message=text or "Request failed", status=response.status_code)

    code = body.get("error_code") or body.get("code") or body.get("statusCode") or body.get("error") or response.status_code
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or response.reason_phrase
        or "Request failed"
    )
    return StoreError(
        code=code,
        message=message,
        details=body.get("details"),
        hint=body.get("hint"),
        status=response.status_code,
    )


def _eq_params(filters: Mapping[str, Any] | None) -> dict[str, str]:
    """Render equality filters as PostgREST query params."""
    if not filters:
        return {}
    return {column: f"eq.{value}" for column, value in filters.items()}


# =============================================================================
# Async Backend Client
# =============================================================================


class AsyncBackendClient:
    """Async HTTP/2 client for the backend project.

    Features:
    - One pooled connection set shared by REST, storage and identity calls
    - Per-call spans and Prometheus metrics
    - Structured ``(data, error)`` results instead of exceptions
    - Current access token forwarded as the bearer credential so remote row
      rules see the signed-in identity

    Args:
        url: Project URL (defaults to settings.supabase_url)
        anon_key: Public anon key (defaults to settings.supabase_anon_key)
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)

    Example:
        >>> async with AsyncBackendClient() as client:
        ...     resp = await client.insert("post_comments", {"post_id": "p1", "profile_id": "u1", "content": "hi"})
    """

    def __init__(
        self,
        url: str | None = None,
        anon_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = (url or settings.supabase_url).rstrip("/")
        self._anon_key = anon_key or settings.supabase_anon_key
        self._transport = transport
        self._access_token: str | None = None

        self._limits = httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
            keepalive_expiry=30.0,
        )

        self._client: httpx.AsyncClient | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def set_access_token(self, token: str | None) -> None:
        """Use ``token`` as the bearer credential (None reverts to the anon key)."""
        self._access_token = token

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._url,
                limits=self._limits,
                http2=self._transport is None,
                transport=self._transport,
                follow_redirects=True,
                headers={"apikey": self._anon_key},
            )
        return self._client

    async def __aenter__(self) -> "AsyncBackendClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close all connections and cleanup resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token or self._anon_key}"}

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        target: str,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> StoreResponse:
        """Perform one HTTP call and fold its outcome into a ``StoreResponse``.

        Args:
            method: HTTP method
            path: Path relative to the project URL
            operation: Operation label for metrics and spans (select, upload, ...)
            target: Table, bucket or surface name for metrics and spans
            params: Query parameters
            json: JSON body
            content: Raw body (uploads)
            headers: Extra headers

        Returns:
            StoreResponse with parsed JSON data (None for empty bodies) or error
        """
        client = await self._ensure_client()
        start_time = time.perf_counter()

        with tracer.start_as_current_span(f"remote.{operation}") as span:
            add_span_attributes(span, {"remote.target": target, "http.method": method})

            try:
                resp = await client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    content=content,
                    headers={**self._auth_headers(), **(headers or {})},
                )
            except httpx.HTTPError as exc:
                error = StoreError(code=NETWORK_ERROR, message=str(exc) or type(exc).__name__)
                self._record(operation, target, start_time, error)
                set_span_error(span, error.message)
                logger.warning(f"{operation} {target}: transport error: {exc!r}")
                return StoreResponse(error=error)

            add_span_attributes(span, {"http.status_code": resp.status_code})

            if resp.is_error:
                error = parse_error_body(resp)
                self._record(operation, target, start_time, error)
                set_span_error(span, error.message)
                logger.debug(f"{operation} {target}: HTTP {resp.status_code} [{error.code}] {error.message}")
                return StoreResponse(error=error)

            data = resp.json() if resp.content else None
            self._record(operation, target, start_time, None)
            return StoreResponse(data=data)

    @staticmethod
    def _record(operation: str, target: str, start_time: float, error: StoreError | None) -> None:
        status = "error" if error else "success"
        remote_operations_total.labels(table=target, operation=operation, status=status).inc()
        remote_operation_duration_seconds.labels(operation=operation, status=status).observe(
            time.perf_counter() - start_time
        )
        if error:
            errors_total.labels(error_type=error.code, component="api").inc()

    # -------------------------------------------------------------------------
    # Relational API
    # -------------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        filters: Mapping[str, Any] | None = None,
        order: tuple[str, SortDirection] | None = None,
        single: bool = False,
    ) -> StoreResponse:
        """Select rows, optionally with an embedded join and a sort key.

        Args:
            table: Table name
            columns: Column list, e.g. ``"*, profiles(username, avatar_url)"``
            filters: Equality filters (column -> value)
            order: ``(column, direction)`` sort
            single: Expect exactly one row; zero or many rows is an error

        Returns:
            StoreResponse with a list of rows (or one row when ``single``)
        """
        params = {"select": columns, **_eq_params(filters)}
        if order:
            column, direction = order
            params["order"] = f"{column}.{direction.value}"

        headers = {"Accept": "application/vnd.pgrst.object+json"} if single else None
        return await self.request(
            "GET", f"/rest/v1/{table}", operation="select", target=table, params=params, headers=headers
        )

    async def insert(self, table: str, rows: dict[str, Any] | list[dict[str, Any]]) -> StoreResponse:
        """Insert one or more rows, returning the stored representation."""
        return await self.request(
            "POST",
            f"/rest/v1/{table}",
            operation="insert",
            target=table,
            json=rows,
            headers={"Prefer": "return=representation"},
        )

    async def upsert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        *,
        on_conflict: str = "id",
    ) -> StoreResponse:
        """Insert or update rows keyed by ``on_conflict``, returning the stored rows."""
        return await self.request(
            "POST",
            f"/rest/v1/{table}",
            operation="upsert",
            target=table,
            params={"on_conflict": on_conflict},
            json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )

    async def delete(self, table: str, *, filters: Mapping[str, Any]) -> StoreResponse:
        """Delete rows matching equality filters, returning the deleted rows.

        Rows hidden by access rules are not deleted and not returned, so an
        empty result means nothing the caller may delete matched.
        """
        if not filters:
            raise ValueError("delete requires at least one filter")
        return await self.request(
            "DELETE",
            f"/rest/v1/{table}",
            operation="delete",
            target=table,
            params=_eq_params(filters),
            headers={"Prefer": "return=representation"},
        )

    # -------------------------------------------------------------------------
    # Object Storage
    # -------------------------------------------------------------------------

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
        """Upload bytes to ``bucket/path``.

        Returns:
            StoreResponse whose data is the stored path (relative to the bucket)
        """
        resp = await self.request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path)}",
            operation="upload",
            target=bucket,
            content=content,
            headers={
                "Content-Type": content_type,
                "Cache-Control": f"max-age={cache_control}",
                "x-upsert": "true" if upsert else "false",
            },
        )
        if resp.error:
            return resp
        return StoreResponse(data=path)

    def public_url(self, bucket: str, path: str) -> str:
        """Derive the public URL of a stored object. Pure; never fails."""
        return f"{self._url}/storage/v1/object/public/{bucket}/{quote(path)}"


__all__ = [
    "AsyncBackendClient",
    "StoreResponse",
    "RemoteOperationError",
    "parse_error_body",
    "NETWORK_ERROR",
    "UNIQUE_VIOLATION",
]
