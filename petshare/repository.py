"""Data-access layer over the remote store.

This module provides a generic ``Repository[T]`` bound to one table and one
Pydantic model, and ``DataAccess``, which exposes one async method per
entity operation used by the application.

Every repository method performs exactly one remote call, turns a store
error into ``RemoteOperationError`` and returns typed models. There are no
retries and no fallbacks: a failed read never yields a default value.

Example:
    >>> data = DataAccess(client)
    >>> posts = await data.fetch_posts()
    >>> for post in posts:
    ...     print(post.pet_name, post.profile.username)
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from petshare.api import RemoteOperationError, StoreResponse
from petshare.config import Settings, SortDirection, settings
from petshare.interfaces import IBackendClient
from petshare.logging import logger
from petshare.models import (
    Comment,
    CommentCreate,
    Post,
    PostCreate,
    Profile,
    ProfileUpsert,
    Reaction,
    ReactionCreate,
    StoreError,
)
from petshare.utils import ensure_list

T = TypeVar("T", bound=BaseModel)

# Columns for rows that carry their author's display fields
WITH_AUTHOR = "*, profiles(username, avatar_url)"

# Error code raised when a delete matched nothing the caller may delete
NO_ROWS_AFFECTED = "no_rows_affected"


# =============================================================================
# Generic Repository
# =============================================================================


class Repository(Generic[T]):
    """Typed access to one remote table.

    Args:
        client: Backend client
        table: Table name
        model: Pydantic model rows are parsed into
        columns: Select list used for reads (may embed joins)

    Example:
        >>> posts = Repository[Post](client, "pet_posts", Post, columns=WITH_AUTHOR)
        >>> newest = await posts.list(order=("created_at", SortDirection.DESC))
    """

    def __init__(self, client: IBackendClient, table: str, model: type[T], columns: str = "*"):
        self.client = client
        self.table = table
        self.model = model
        self.columns = columns

    def _check(self, operation: str, response: StoreResponse) -> Any:
        """Return response data, raising on a structured store error."""
        if response.error:
            logger.warning(
                f"{operation} on {self.table} failed: [{response.error.code}] {response.error.message}"
            )
            raise RemoteOperationError(f"{operation} {self.table}", response.error)
        return response.data

    def _parse_many(self, data: Any) -> list[T]:
        return [self.model.model_validate(row) for row in ensure_list(data)]

    async def list(
        self,
        *,
        filters: dict[str, Any] | None = None,
        order: tuple[str, SortDirection] | None = None,
    ) -> list[T]:
        """Fetch rows matching equality filters, optionally sorted.

        Raises:
            RemoteOperationError: If the store rejects the select
        """
        response = await self.client.select(self.table, self.columns, filters=filters, order=order)
        return self._parse_many(self._check("select", response))

    async def get(self, entity_id: str, key: str = "id") -> T:
        """Fetch exactly one row by key.

        Raises:
            RemoteOperationError: If the row is missing, hidden or the select fails
        """
        response = await self.client.select(self.table, self.columns, filters={key: entity_id}, single=True)
        return self.model.model_validate(self._check("select", response))

    async def create(self, payload: BaseModel) -> T:
        """Insert one row and return the stored representation.

        Raises:
            RemoteOperationError: If the store rejects the insert
        """
        response = await self.client.insert(self.table, payload.model_dump(mode="json"))
        rows = self._parse_many(self._check("insert", response))
        return rows[0]

    async def upsert(self, payload: BaseModel, on_conflict: str = "id", exclude: set[str] | None = None) -> T:
        """Insert or update one row keyed by ``on_conflict``.

        Columns named in ``exclude`` are not sent, so stored values survive.

        Raises:
            RemoteOperationError: If the store rejects the upsert (e.g. ``23505``)
        """
        row = payload.model_dump(mode="json", exclude=exclude)
        response = await self.client.upsert(self.table, row, on_conflict=on_conflict)
        rows = self._parse_many(self._check("upsert", response))
        return rows[0]

    async def delete_where(self, **filters: Any) -> int:
        """Delete rows matching equality filters.

        Returns:
            Number of rows deleted (rows hidden by access rules are not counted)

        Raises:
            RemoteOperationError: If the store rejects the delete
        """
        response = await self.client.delete(self.table, filters=filters)
        return len(ensure_list(self._check("delete", response)))


# =============================================================================
# Data-Access Functions
# =============================================================================


class DataAccess:
    """One async method per entity operation.

    Args:
        client: Backend client
        config: Settings providing table names (defaults to global settings)
    """

    def __init__(self, client: IBackendClient, config: Settings | None = None):
        config = config or settings
        self.client = client
        self.posts = Repository[Post](client, config.posts_table, Post, columns=WITH_AUTHOR)
        self.reactions = Repository[Reaction](client, config.reactions_table, Reaction)
        self.comments = Repository[Comment](client, config.comments_table, Comment, columns=WITH_AUTHOR)
        self.profiles = Repository[Profile](client, config.profiles_table, Profile)

    # -------------------------------------------------------------------------
    # Posts
    # -------------------------------------------------------------------------

    async def fetch_posts(self) -> list[Post]:
        """All posts with author, newest first."""
        return await self.posts.list(order=("created_at", SortDirection.DESC))

    async def fetch_user_posts(self, profile_id: str) -> list[Post]:
        """One profile's posts, newest first."""
        return await self.posts.list(
            filters={"profile_id": profile_id},
            order=("created_at", SortDirection.DESC),
        )

    async def fetch_post(self, post_id: str) -> Post:
        return await self.posts.get(post_id)

    async def insert_post(self, payload: PostCreate) -> Post:
        return await self.posts.create(payload)

    async def delete_post(self, post_id: str) -> None:
        """Delete a post owned by the caller.

        Raises:
            RemoteOperationError: If the store rejects the call, or if no row
                was deleted because the post is missing or owned by someone else
        """
        deleted = await self.posts.delete_where(id=post_id)
        if deleted == 0:
            raise RemoteOperationError(
                f"delete {self.posts.table}",
                StoreError(code=NO_ROWS_AFFECTED, message=f"No deletable post with id {post_id}"),
            )

    # -------------------------------------------------------------------------
    # Reactions
    # -------------------------------------------------------------------------

    async def fetch_reactions(self) -> list[Reaction]:
        return await self.reactions.list()

    async def fetch_reactions_for(self, post_id: str, profile_id: str) -> list[Reaction]:
        """Reactions by one profile on one post (normally zero or one)."""
        return await self.reactions.list(filters={"post_id": post_id, "profile_id": profile_id})

    async def insert_reaction(self, post_id: str, profile_id: str) -> Reaction:
        return await self.reactions.create(ReactionCreate(post_id=post_id, profile_id=profile_id))

    async def delete_reaction(self, post_id: str, profile_id: str) -> int:
        """Remove every reaction by ``profile_id`` on ``post_id``."""
        return await self.reactions.delete_where(post_id=post_id, profile_id=profile_id)

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    async def fetch_comments(self) -> list[Comment]:
        """All comments with author, oldest first."""
        return await self.comments.list(order=("created_at", SortDirection.ASC))

    async def insert_comment(self, post_id: str, profile_id: str, content: str) -> Comment:
        """Insert a comment; content is trimmed and must not be blank.

        Raises:
            pydantic.ValidationError: If content is blank (no remote call is made)
            RemoteOperationError: If the store rejects the insert
        """
        payload = CommentCreate(post_id=post_id, profile_id=profile_id, content=content)
        return await self.comments.create(payload)

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def fetch_profile(self, profile_id: str) -> Profile:
        return await self.profiles.get(profile_id)

    async def upsert_profile(self, payload: ProfileUpsert) -> Profile:
        """Create or update a profile; a missing avatar keeps the stored one."""
        exclude = {"avatar_url"} if payload.avatar_url is None else None
        return await self.profiles.upsert(payload, exclude=exclude)


__all__ = ["Repository", "DataAccess", "WITH_AUTHOR", "NO_ROWS_AFFECTED"]
