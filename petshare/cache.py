"""Keyed query cache with prefix invalidation.

The cache holds the page session's read-only copy of remote data. Entries are
keyed by tuples whose first element is a ``QueryTag``; invalidating a key
marks every entry that starts with it as stale and refetches the ones that
currently have subscribers.

Features:
- Read-or-fetch with one shared in-flight call per key
- Fresh until invalidated, with an optional stale time
- Subscriber tracking so only observed queries are refetched
- Failed fetches are recorded on the entry and re-raised, never replaced by a
  default value

Example:
    >>> cache = QueryCache()
    >>> posts = await cache.fetch_query((QueryTag.POSTS,), data.fetch_posts)
    >>> await cache.invalidate_queries(QueryTag.POSTS)
    [('posts',)]
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import Any

from petshare.config import settings
from petshare.interfaces import QueryKey
from petshare.logging import logger
from petshare.metrics import (
    cache_entries,
    cache_fetches_total,
    cache_invalidations_total,
    cache_subscribers,
    errors_total,
)

FetchFn = Callable[[], Awaitable[Any]]
Listener = Callable[["QueryState"], None]


class QueryStatus(StrEnum):
    """Lifecycle of a cache entry."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryState:
    """Snapshot of one cache entry as seen by views.

    Attributes:
        key: Query key
        status: PENDING until the first fetch settles
        data: Last successfully fetched value (kept across later failures)
        error: Error of the most recent fetch, if it failed
        is_stale: Whether the next read will refetch
        is_fetching: Whether a fetch is in flight
        updated_at: Monotonic time of the last successful fetch
    """

    key: QueryKey
    status: QueryStatus
    data: Any = None
    error: Exception | None = None
    is_stale: bool = True
    is_fetching: bool = False
    updated_at: float | None = None


@dataclass(eq=False)
class _Entry:
    key: QueryKey
    fetch_fn: FetchFn | None = None
    status: QueryStatus = QueryStatus.PENDING
    data: Any = None
    error: Exception | None = None
    invalidated: bool = True
    updated_at: float | None = None
    generation: int = 0
    task: asyncio.Task | None = None
    task_generation: int = -1
    subscriptions: list["QuerySubscription"] = field(default_factory=list)

    def snapshot(self, is_stale: bool) -> QueryState:
        return QueryState(
            key=self.key,
            status=self.status,
            data=self.data,
            error=self.error,
            is_stale=is_stale,
            is_fetching=self.task is not None,
            updated_at=self.updated_at,
        )


def _consume_exception(task: asyncio.Task) -> None:
    # awaiters receive the error; this only marks it retrieved
    if not task.cancelled():
        task.exception()


def normalize_key(key: QueryKey | str) -> QueryKey:
    """Accept a bare tag or a tuple key."""
    if isinstance(key, str):
        return (key,)
    return tuple(key)


class QuerySubscription:
    """A view's interest in one query key.

    Released with ``unsubscribe()`` on view teardown; also usable as a
    context manager.
    """

    def __init__(self, cache: "QueryCache", key: QueryKey, listener: Listener | None):
        self.cache = cache
        self.key = key
        self.listener = listener
        self.active = True

    async def fetch(self) -> Any:
        """Read-or-fetch the subscribed key."""
        entry = self.cache._entries[self.key]
        return await self.cache.fetch_query(self.key, entry.fetch_fn)

    @property
    def state(self) -> QueryState | None:
        return self.cache.get_query_state(self.key)

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self.cache._release(self)

    def __enter__(self) -> "QuerySubscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()


class QueryCache:
    """Query cache shared by every view in a page session.

    Args:
        stale_time: Optional age after which entries refetch on read
            (defaults to settings.query_stale_timedelta)
    """

    def __init__(self, stale_time: timedelta | None = None):
        self.stale_time = stale_time if stale_time is not None else settings.query_stale_timedelta
        self._entries: dict[QueryKey, _Entry] = {}

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _entry(self, key: QueryKey) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry(key=key)
            cache_entries.set(len(self._entries))
        return entry

    def _is_stale(self, entry: _Entry) -> bool:
        if entry.invalidated or entry.status != QueryStatus.SUCCESS:
            return True
        if self.stale_time is not None and entry.updated_at is not None:
            return time.monotonic() - entry.updated_at >= self.stale_time.total_seconds()
        return False

    def _notify(self, entry: _Entry) -> None:
        state = entry.snapshot(self._is_stale(entry))
        for subscription in list(entry.subscriptions):
            if subscription.listener is None:
                continue
            try:
                subscription.listener(state)
            except Exception:
                logger.exception(f"Query listener for {entry.key} raised")

    def _release(self, subscription: QuerySubscription) -> None:
        entry = self._entries.get(subscription.key)
        if entry is not None and subscription in entry.subscriptions:
            entry.subscriptions.remove(subscription)
            cache_subscribers.dec()

    async def _run_fetch(self, entry: _Entry, generation: int) -> Any:
        tag = entry.key[0]
        try:
            data = await entry.fetch_fn()
        except Exception as exc:
            entry.status = QueryStatus.ERROR
            entry.error = exc
            cache_fetches_total.labels(tag=tag, status="error").inc()
            errors_total.labels(error_type=type(exc).__name__, component="cache").inc()
            raise
        else:
            entry.status = QueryStatus.SUCCESS
            entry.data = data
            entry.error = None
            entry.updated_at = time.monotonic()
            # a fetch started before the latest invalidation stays stale
            entry.invalidated = generation != entry.generation
            cache_fetches_total.labels(tag=tag, status="success").inc()
            return data
        finally:
            if entry.task is asyncio.current_task():
                entry.task = None
            self._notify(entry)

    async def _fetch(self, entry: _Entry) -> Any:
        """Join the in-flight fetch for the current generation or start one."""
        while True:
            task = entry.task
            if task is None:
                entry.task_generation = entry.generation
                entry.task = task = asyncio.ensure_future(self._run_fetch(entry, entry.generation))
                task.add_done_callback(_consume_exception)
                break
            if entry.task_generation == entry.generation:
                break
            # an older fetch is still running; let it settle first
            await asyncio.wait([task])
        return await asyncio.shield(task)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def fetch_query(self, key: QueryKey | str, fetch_fn: FetchFn) -> Any:
        """Return cached data when fresh, otherwise fetch and cache it.

        Args:
            key: Query key
            fetch_fn: Zero-argument coroutine function producing the value

        Returns:
            The cached or freshly fetched value

        Raises:
            Exception: Whatever ``fetch_fn`` raised; the entry keeps the error
        """
        entry = self._entry(normalize_key(key))
        entry.fetch_fn = fetch_fn
        if not self._is_stale(entry):
            return entry.data
        return await self._fetch(entry)

    async def invalidate_queries(self, key: QueryKey | str) -> list[QueryKey]:
        """Mark every entry starting with ``key`` stale and refetch observed ones.

        Refetch failures are stored on their entries, pushed to subscribers and
        logged; they do not propagate to the caller.

        Returns:
            Keys of the matched entries
        """
        prefix = normalize_key(key)
        matched = [entry for k, entry in self._entries.items() if k[: len(prefix)] == prefix]

        for entry in matched:
            entry.invalidated = True
            entry.generation += 1
            cache_invalidations_total.labels(tag=entry.key[0]).inc()

        observed = [entry for entry in matched if entry.subscriptions and entry.fetch_fn is not None]
        results = await asyncio.gather(*(self._fetch(entry) for entry in observed), return_exceptions=True)

        for entry, result in zip(observed, results):
            if isinstance(result, Exception):
                logger.warning(f"Refetch of {entry.key} after invalidation failed: {result}")

        logger.debug(f"Invalidated {len(matched)} queries for {prefix} ({len(observed)} refetched)")
        return [entry.key for entry in matched]

    def subscribe(
        self,
        key: QueryKey | str,
        fetch_fn: FetchFn,
        listener: Listener | None = None,
    ) -> QuerySubscription:
        """Register interest in ``key`` so invalidation refetches it.

        Args:
            key: Query key
            fetch_fn: Fetch function used for refetches
            listener: Called with a ``QueryState`` after every settled fetch

        Returns:
            Subscription to release on teardown
        """
        entry = self._entry(normalize_key(key))
        entry.fetch_fn = fetch_fn
        subscription = QuerySubscription(self, entry.key, listener)
        entry.subscriptions.append(subscription)
        cache_subscribers.inc()
        return subscription

    def get_query_data(self, key: QueryKey | str) -> Any:
        entry = self._entries.get(normalize_key(key))
        return entry.data if entry else None

    def get_query_state(self, key: QueryKey | str) -> QueryState | None:
        entry = self._entries.get(normalize_key(key))
        return entry.snapshot(self._is_stale(entry)) if entry else None

    def subscriber_count(self, key: QueryKey | str) -> int:
        entry = self._entries.get(normalize_key(key))
        return len(entry.subscriptions) if entry else 0

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    def clear(self) -> None:
        """Drop every entry (page session teardown)."""
        for entry in self._entries.values():
            cache_subscribers.dec(len(entry.subscriptions))
            for subscription in entry.subscriptions:
                subscription.active = False
        self._entries.clear()
        cache_entries.set(0)


__all__ = [
    "QueryCache",
    "QueryState",
    "QueryStatus",
    "QuerySubscription",
    "FetchFn",
    "Listener",
    "normalize_key",
]
