"""Mutation executors.

A ``Mutation`` wraps one async write with a static set of query keys to
invalidate. Each trigger creates an independent ``MutationRun`` that moves
``idle -> in_flight -> success | failed``:

- success: the write completed, then every declared key is invalidated
  (subscribed queries are refetched before the run settles)
- failed: nothing is invalidated or written to the cache; a destructive toast
  with a generic per-mutation message is shown and the error is logged with
  its store code

The builders at the bottom of the module create the application's mutations
with their declared invalidations (``MUTATION_INVALIDATIONS``).

Example:
    >>> add_comment = add_comment_mutation(data, cache, notifier)
    >>> run = await add_comment.mutate(CommentCreate(post_id="p1", profile_id="u1", content="cute!"))
    >>> run.status, run.invalidated
    (<MutationStatus.SUCCESS: 'success'>, [('post-comments',)])
"""

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from petshare.api import RemoteOperationError
from petshare.cache import QueryCache, normalize_key
from petshare.config import QueryTag
from petshare.interfaces import QueryKey
from petshare.logging import logger, operation_context
from petshare.metrics import errors_total, mutations_total
from petshare.models import Comment, CommentCreate, Post, PostCreate, Profile, ProfileUpsert, SelectedFile
from petshare.notifications import Notifier
from petshare.repository import DataAccess
from petshare.session import AuthRequiredError, SessionContext
from petshare.storage import ObjectStore
from petshare.telemetry import add_span_attributes, get_tracer, record_exception_in_span
from petshare.utils import utc_now

tracer = get_tracer(__name__)

V = TypeVar("V")
R = TypeVar("R")

ErrorMessage = str | Callable[[Exception], str]

# Static invalidation table: mutation name -> query keys invalidated on success
MUTATION_INVALIDATIONS: dict[str, tuple[QueryKey, ...]] = {
    "toggle-reaction": ((QueryTag.REACTIONS,),),
    "add-comment": ((QueryTag.COMMENTS,),),
    "delete-post": ((QueryTag.USER_POSTS,), (QueryTag.POSTS,)),
    "create-post": ((QueryTag.POSTS,), (QueryTag.USER_POSTS,)),
    "save-profile": ((QueryTag.PROFILE,),),
}

USERNAME_TAKEN_MESSAGE = "Username already taken. Please choose another."


class MutationStatus(StrEnum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class MutationRun(Generic[V, R]):
    """One trigger of a mutation.

    Attributes:
        mutation: Mutation name
        variables: Input passed to the write
        status: Current state
        result: Write result on success
        error: Exception on failure
        invalidated: Keys invalidated after success (empty on failure)
    """

    mutation: str
    variables: V | None = None
    status: MutationStatus = MutationStatus.IDLE
    result: R | None = None
    error: Exception | None = None
    invalidated: list[QueryKey] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == MutationStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == MutationStatus.FAILED


def error_code(exc: Exception) -> str:
    """Store code for remote failures, class name otherwise."""
    if isinstance(exc, RemoteOperationError):
        return exc.code
    return type(exc).__name__


class Mutation(Generic[V, R]):
    """An async write plus its declared cache invalidations.

    Args:
        name: Mutation name (also the log ``operation`` and metrics label)
        mutation_fn: Async write taking the run's variables
        cache: Query cache to invalidate
        notifier: Toast sink
        error_message: Generic failure description, or a callable mapping
            the exception to one
        invalidates: Keys to invalidate on success (defaults to the entry in
            ``MUTATION_INVALIDATIONS``)
        success_message: Optional description for a success toast
        on_success: Optional callback (sync or async) receiving the result
        on_error: Optional callback receiving the exception
        quiet_errors: Exception types that skip the error toast (``on_error``
            still runs)
    """

    def __init__(
        self,
        name: str,
        mutation_fn: Callable[[V], Awaitable[R]],
        *,
        cache: QueryCache,
        notifier: Notifier,
        error_message: ErrorMessage,
        invalidates: Iterable[QueryKey | str] | None = None,
        success_message: str | None = None,
        on_success: Callable[[R], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
        quiet_errors: tuple[type[Exception], ...] = (),
    ):
        self.name = name
        self.mutation_fn = mutation_fn
        self.cache = cache
        self.notifier = notifier
        self.error_message = error_message
        declared = MUTATION_INVALIDATIONS.get(name, ()) if invalidates is None else invalidates
        self.invalidates: tuple[QueryKey, ...] = tuple(normalize_key(key) for key in declared)
        self.success_message = success_message
        self.on_success = on_success
        self.on_error = on_error
        self.quiet_errors = quiet_errors
        self.in_flight = 0
        self.last_run: MutationRun[V, R] | None = None

    @property
    def is_pending(self) -> bool:
        return self.in_flight > 0

    def describe_error(self, exc: Exception) -> str:
        if callable(self.error_message):
            return self.error_message(exc)
        return self.error_message

    async def mutate(self, variables: V | None = None) -> MutationRun[V, R]:
        """Run the write; failures are reported, not raised.

        Returns:
            The settled run
        """
        run: MutationRun[V, R] = MutationRun(mutation=self.name, variables=variables)
        self.last_run = run
        with operation_context(self.name), tracer.start_as_current_span(f"mutation.{self.name}") as span:
            await self._execute(run)
            add_span_attributes(span, {"mutation.status": run.status.value, "mutation.invalidated": run.invalidated})
            if run.error is not None:
                record_exception_in_span(span, run.error)
        return run

    async def mutate_async(self, variables: V | None = None) -> R:
        """Run the write and re-raise its error after reporting it."""
        run = await self.mutate(variables)
        if run.error is not None:
            raise run.error
        return run.result  # type: ignore[return-value]

    async def _execute(self, run: MutationRun[V, R]) -> None:
        run.status = MutationStatus.IN_FLIGHT
        run.started_at = utc_now()
        self.in_flight += 1
        try:
            run.result = await self.mutation_fn(run.variables)  # type: ignore[arg-type]
        except Exception as exc:
            run.status = MutationStatus.FAILED
            run.error = exc
            run.finished_at = utc_now()
            self._report_failure(exc)
            await self._callback("on_error", self.on_error, exc)
            return
        finally:
            self.in_flight -= 1

        for key in self.invalidates:
            await self.cache.invalidate_queries(key)
            run.invalidated.append(key)

        run.status = MutationStatus.SUCCESS
        run.finished_at = utc_now()
        mutations_total.labels(mutation=self.name, status="success").inc()
        logger.debug(f"Mutation {self.name} succeeded; invalidated {run.invalidated}")

        if self.success_message:
            self.notifier.success(self.success_message)
        await self._callback("on_success", self.on_success, run.result)

    async def _callback(self, kind: str, callback: Callable[[Any], Any] | None, value: Any) -> None:
        """Run a caller hook; a failing hook is logged and does not change the run."""
        if callback is None:
            return
        try:
            await _maybe_await(callback(value))
        except Exception:
            logger.exception(f"Mutation {self.name} {kind} callback failed")

    def _report_failure(self, exc: Exception) -> None:
        code = error_code(exc)
        mutations_total.labels(mutation=self.name, status="failed").inc()
        errors_total.labels(error_type=code, component="mutation").inc()
        logger.error(f"Mutation {self.name} failed [{code}]: {exc}")
        if not isinstance(exc, self.quiet_errors):
            self.notifier.error(self.describe_error(exc))


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# =============================================================================
# Reaction Toggle
# =============================================================================


class ReactionToggle(BaseModel):
    """Toggle input; ``add`` is decided when the user clicks."""

    post_id: str
    profile_id: str
    add: bool


def has_reacted(reactions: Iterable[Any], post_id: str, profile_id: str | None) -> bool:
    """Whether ``profile_id`` has a reaction on ``post_id`` in a reaction list."""
    if profile_id is None:
        return False
    return any(r.post_id == post_id and r.profile_id == profile_id for r in reactions)


class ReactionLocks:
    """Per ``(post_id, profile_id)`` locks serializing reaction writes.

    A pair's lock lives only while some toggle holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._waiters: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, post_id: str, profile_id: str) -> AsyncIterator[None]:
        pair = (post_id, profile_id)
        lock = self._locks.setdefault(pair, asyncio.Lock())
        self._waiters[pair] = self._waiters.get(pair, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[pair] -= 1
            if not self._waiters[pair]:
                del self._waiters[pair]
                del self._locks[pair]

    def __len__(self) -> int:
        return len(self._locks)


def toggle_reaction_mutation(
    data: DataAccess,
    cache: QueryCache,
    notifier: Notifier,
    locks: ReactionLocks,
) -> Mutation[ReactionToggle, bool]:
    """Add or remove the caller's reaction on a post.

    Writes for one pair run one at a time. Under the lock the pair's rows
    are re-read so that "add" inserts only when none exist and "remove"
    deletes every match; two adds issued before a refresh leave one row.

    The result is True when a row was written or deleted.
    """

    async def toggle(v: ReactionToggle) -> bool:
        async with locks.hold(v.post_id, v.profile_id):
            existing = await data.fetch_reactions_for(v.post_id, v.profile_id)
            if v.add:
                if existing:
                    logger.debug(f"Reaction on {v.post_id} already present; skipping insert")
                    return False
                await data.insert_reaction(v.post_id, v.profile_id)
                return True
            if not existing:
                return False
            await data.delete_reaction(v.post_id, v.profile_id)
            return True

    return Mutation(
        "toggle-reaction",
        toggle,
        cache=cache,
        notifier=notifier,
        error_message="Failed to update reaction",
    )


# =============================================================================
# Comments and Posts
# =============================================================================


def add_comment_mutation(
    data: DataAccess,
    cache: QueryCache,
    notifier: Notifier,
    on_success: Callable[[Comment], Any] | None = None,
) -> Mutation[CommentCreate, Comment]:
    async def add(v: CommentCreate) -> Comment:
        return await data.insert_comment(v.post_id, v.profile_id, v.content)

    return Mutation(
        "add-comment",
        add,
        cache=cache,
        notifier=notifier,
        error_message="Failed to add comment",
        on_success=on_success,
    )


def delete_post_mutation(data: DataAccess, cache: QueryCache, notifier: Notifier) -> Mutation[str, None]:
    return Mutation(
        "delete-post",
        data.delete_post,
        cache=cache,
        notifier=notifier,
        error_message="Failed to delete post",
        success_message="Post deleted",
    )


class NewPost(BaseModel):
    """Create-post input: validated fields, the owner and the chosen image."""

    profile_id: str
    pet_name: str
    pet_breed: str | None = None
    pet_age: str | None = None
    caption: str
    image: SelectedFile


def create_post_mutation(
    data: DataAccess,
    photos: ObjectStore,
    cache: QueryCache,
    notifier: Notifier,
    on_success: Callable[[Post], Any] | None = None,
) -> Mutation[NewPost, Post]:
    """Upload the image, then insert the post pointing at its public URL."""

    async def create(v: NewPost) -> Post:
        photo_url = await photos.upload_public(v.image)
        return await data.insert_post(
            PostCreate(
                profile_id=v.profile_id,
                pet_name=v.pet_name,
                pet_breed=v.pet_breed,
                pet_age=v.pet_age,
                photo_url=photo_url,
                caption=v.caption,
            )
        )

    return Mutation(
        "create-post",
        create,
        cache=cache,
        notifier=notifier,
        error_message="Failed to create pet post. Please try again.",
        success_message="Your pet post has been created.",
        on_success=on_success,
    )


# =============================================================================
# Profile
# =============================================================================


class ProfileSubmission(BaseModel):
    username: str
    email: str | None = None
    bio: str | None = None
    location: str | None = None
    avatar: SelectedFile | None = None


def profile_error_message(exc: Exception) -> str:
    """Map a profile save failure to the message shown to the user."""
    if isinstance(exc, RemoteOperationError):
        if exc.is_unique_violation:
            return USERNAME_TAKEN_MESSAGE
        if exc.operation.startswith("upload"):
            return "Error uploading avatar"
        return exc.error.message
    return str(exc)


def save_profile_mutation(
    data: DataAccess,
    avatars: ObjectStore,
    session: SessionContext,
    cache: QueryCache,
    notifier: Notifier,
    on_success: Callable[[Profile], Any] | None = None,
    on_auth_required: Callable[[Exception], Any] | None = None,
) -> Mutation[ProfileSubmission, Profile]:
    """Upload an optional avatar, then upsert the caller's profile.

    The identity is re-read at submit time; without one the run fails with
    ``AuthRequiredError`` and ``on_auth_required`` runs instead of a toast.
    """

    async def save(v: ProfileSubmission) -> Profile:
        user = await session.current_user()
        avatar_url = None
        if v.avatar is not None:
            avatar_url = await avatars.upload_public(v.avatar, prefix=user.id)
        return await data.upsert_profile(
            ProfileUpsert(
                id=user.id,
                username=v.username,
                email=v.email or user.email,
                bio=v.bio,
                location=v.location,
                avatar_url=avatar_url,
            )
        )

    return Mutation(
        "save-profile",
        save,
        cache=cache,
        notifier=notifier,
        error_message=profile_error_message,
        success_message="Profile created successfully!",
        on_success=on_success,
        on_error=_only(AuthRequiredError, on_auth_required) if on_auth_required else None,
        quiet_errors=(AuthRequiredError,),
    )


def _only(exc_type: type[Exception], callback: Callable[[Exception], Any]) -> Callable[[Exception], Any]:
    def handler(exc: Exception) -> Any:
        if isinstance(exc, exc_type):
            return callback(exc)
        return None

    return handler


__all__ = [
    "MUTATION_INVALIDATIONS",
    "USERNAME_TAKEN_MESSAGE",
    "Mutation",
    "MutationRun",
    "MutationStatus",
    "ReactionToggle",
    "ReactionLocks",
    "NewPost",
    "ProfileSubmission",
    "has_reacted",
    "error_code",
    "profile_error_message",
    "toggle_reaction_mutation",
    "add_comment_mutation",
    "delete_post_mutation",
    "create_post_mutation",
    "save_profile_mutation",
]
