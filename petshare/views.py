"""Headless view components.

Each view reads shared data only from the query cache, keeps its own
local state (drafts, selected files, open flags) and triggers writes only
through mutation executors. Local state is dropped on ``unmount()``.

Authenticated affordances are gated on ``SessionContext.is_authenticated``.
The gate is advisory: the remote access rules decide what a caller may do.

Example:
    >>> gallery = app.gallery()
    >>> await gallery.mount()
    >>> card = gallery.cards[0]
    >>> card.comments.draft = "So fluffy"
    >>> await card.comments.submit()
    >>> gallery.unmount()
"""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from petshare.api import RemoteOperationError
from petshare.cache import QueryState, QuerySubscription
from petshare.config import QueryTag
from petshare.forms import CommentForm, FormValidationError, PetPostForm, ProfileForm, validate_form
from petshare.interfaces import QueryKey
from petshare.logging import logger
from petshare.models import Comment, CommentCreate, Post, Profile, Reaction, SelectedFile
from petshare.mutations import (
    MutationRun,
    NewPost,
    ProfileSubmission,
    ReactionToggle,
    has_reacted,
    save_profile_mutation,
)
from petshare.session import AuthRequiredError
from petshare.utils import encode_data_url

if TYPE_CHECKING:
    from petshare.app import PetShareApp

# Routes
HOME = "/"
AUTH = "/auth"
CREATE_PROFILE = "/create-profile"
GALLERY = "/gallery"


# =============================================================================
# Router
# =============================================================================


class Router:
    """Records where the page session has been sent."""

    def __init__(self, initial: str = HOME):
        self.path = initial
        self.history: list[str] = [initial]
        self._listeners: list[Callable[[str], None]] = []

    def navigate(self, path: str) -> None:
        logger.debug(f"Navigate {self.path} -> {path}")
        self.path = path
        self.history.append(path)
        for listener in list(self._listeners):
            listener(path)

    def add_listener(self, listener: Callable[[str], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove


# =============================================================================
# Query Keys
# =============================================================================


def posts_key() -> QueryKey:
    return (QueryTag.POSTS,)


def user_posts_key(profile_id: str) -> QueryKey:
    return (QueryTag.USER_POSTS, profile_id)


def reactions_key() -> QueryKey:
    return (QueryTag.REACTIONS,)


def comments_key() -> QueryKey:
    return (QueryTag.COMMENTS,)


def profile_key(profile_id: str) -> QueryKey:
    return (QueryTag.PROFILE, profile_id)


# =============================================================================
# Base View
# =============================================================================


class View:
    """Mount/unmount lifecycle plus cache and session subscriptions.

    ``version`` increases every time a watched query settles or the identity
    changes, standing in for a re-render.
    """

    def __init__(self, app: "PetShareApp"):
        self.app = app
        self.mounted = False
        self.version = 0
        self._subscriptions: list[QuerySubscription] = []
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def is_authenticated(self) -> bool:
        return self.app.session.is_authenticated

    @property
    def user_id(self) -> str | None:
        return self.app.session.user_id

    def _watch(self, key: QueryKey, fetch_fn: Callable[[], Awaitable[Any]]) -> QuerySubscription:
        subscription = self.app.cache.subscribe(key, fetch_fn, self._on_query_change)
        self._subscriptions.append(subscription)
        return subscription

    def _on_query_change(self, state: QueryState) -> None:
        self.version += 1

    def _on_session_change(self, user: Any) -> None:
        self.version += 1

    async def mount(self) -> None:
        self.mounted = True
        self._unsubscribers.append(self.app.session.subscribe(self._on_session_change))

    def unmount(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._subscriptions.clear()
        self._unsubscribers.clear()
        self.mounted = False
        self.reset()

    def reset(self) -> None:
        """Discard local state."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} mounted={self.mounted} version={self.version}>"


# =============================================================================
# Landing
# =============================================================================


class IndexView(View):
    @property
    def primary_label(self) -> str:
        return "Create Profile" if self.is_authenticated else "Get Started"

    def get_started(self) -> None:
        self.app.router.navigate(CREATE_PROFILE if self.is_authenticated else AUTH)

    def browse(self) -> None:
        self.app.router.navigate(GALLERY)


# =============================================================================
# Gallery
# =============================================================================


class GalleryView(View):
    """All posts with their reactions and comments.

    Attributes:
        errors: Query key -> error of the last failed read
    """

    def __init__(self, app: "PetShareApp"):
        super().__init__(app)
        self.errors: dict[QueryKey, Exception] = {}
        self._cards: dict[str, PostCardView] = {}

    async def mount(self) -> None:
        await super().mount()
        data = self.app.data
        subscriptions = [
            self._watch(posts_key(), data.fetch_posts),
            self._watch(reactions_key(), data.fetch_reactions),
            self._watch(comments_key(), data.fetch_comments),
        ]
        for subscription in subscriptions:
            try:
                await subscription.fetch()
            except Exception as exc:
                logger.warning(f"Gallery read of {subscription.key} failed: {exc}")
                self.errors[subscription.key] = exc

    def _on_query_change(self, state: QueryState) -> None:
        if state.error is not None:
            self.errors[state.key] = state.error
        else:
            self.errors.pop(state.key, None)
        super()._on_query_change(state)

    @property
    def is_loading(self) -> bool:
        state = self.app.cache.get_query_state(posts_key())
        return state is None or (state.data is None and state.error is None)

    @property
    def posts(self) -> list[Post]:
        return self.app.cache.get_query_data(posts_key()) or []

    @property
    def reactions(self) -> list[Reaction]:
        return self.app.cache.get_query_data(reactions_key()) or []

    @property
    def comments(self) -> list[Comment]:
        return self.app.cache.get_query_data(comments_key()) or []

    @property
    def cards(self) -> list["PostCardView"]:
        """One card per cached post, newest first; card-local state survives refetches."""
        cards: dict[str, PostCardView] = {}
        for post in self.posts:
            card = self._cards.get(post.id)
            if card is None:
                card = PostCardView(self.app, self, post)
            card.post = post
            cards[post.id] = card
        self._cards = cards
        return list(cards.values())

    def card(self, post_id: str) -> "PostCardView":
        for card in self.cards:
            if card.post.id == post_id:
                return card
        raise KeyError(post_id)

    def reset(self) -> None:
        self._cards.clear()
        self.errors.clear()


class PostCardView:
    """One post with its author, detail line, reactions and comments."""

    def __init__(self, app: "PetShareApp", gallery: GalleryView, post: Post):
        self.post = post
        self.reactions = PostReactionsView(app, gallery, post.id)
        self.comments = CommentSectionView(app, gallery, post.id)

    @property
    def image_url(self) -> str:
        return self.post.photo_url

    @property
    def details(self) -> str | None:
        return self.post.details

    @property
    def author_name(self) -> str | None:
        return self.post.profile.username if self.post.profile else None

    @property
    def author_avatar(self) -> str | None:
        return self.post.profile.avatar_url if self.post.profile else None

    @property
    def author_initial(self) -> str:
        return self.post.profile.initial if self.post.profile else ""


class PostReactionsView:
    """Heart button and count; hidden without an identity."""

    def __init__(self, app: "PetShareApp", gallery: GalleryView, post_id: str):
        self.app = app
        self.gallery = gallery
        self.post_id = post_id

    @property
    def visible(self) -> bool:
        return self.app.session.is_authenticated

    @property
    def count(self) -> int:
        return sum(1 for r in self.gallery.reactions if r.post_id == self.post_id)

    @property
    def reacted(self) -> bool:
        return has_reacted(self.gallery.reactions, self.post_id, self.app.session.user_id)

    async def toggle(self) -> MutationRun | None:
        """Add the caller's reaction, or remove it if the cache shows one."""
        user_id = self.app.session.user_id
        if user_id is None:
            return None
        variables = ReactionToggle(post_id=self.post_id, profile_id=user_id, add=not self.reacted)
        return await self.app.toggle_reaction.mutate(variables)


class CommentSectionView:
    """Comments on one post, plus a draft box for signed-in users."""

    def __init__(self, app: "PetShareApp", gallery: GalleryView, post_id: str):
        self.app = app
        self.gallery = gallery
        self.post_id = post_id
        self.draft = ""
        self.errors: dict[str, str] = {}

    @property
    def comments(self) -> list[Comment]:
        return [c for c in self.gallery.comments if c.post_id == self.post_id]

    @property
    def can_comment(self) -> bool:
        return self.app.session.is_authenticated

    async def submit(self) -> MutationRun | None:
        """Post the draft; blank drafts are dropped without a remote call."""
        user_id = self.app.session.user_id
        if user_id is None:
            return None
        try:
            form = validate_form(CommentForm, {"content": self.draft})
        except FormValidationError as e:
            self.errors = e.errors
            return None

        self.errors = {}
        run = await self.app.add_comment.mutate(
            CommentCreate(post_id=self.post_id, profile_id=user_id, content=form.content)
        )
        if run.succeeded:
            self.draft = ""
        return run


# =============================================================================
# Post Form
# =============================================================================


class PetPostFormView(View):
    """Create-post form with an image preview."""

    def __init__(self, app: "PetShareApp"):
        super().__init__(app)
        self.reset()

    def reset(self) -> None:
        self.values: dict[str, str] = {"pet_name": "", "pet_breed": "", "pet_age": "", "caption": ""}
        self.image: SelectedFile | None = None
        self.preview_url: str | None = None
        self.errors: dict[str, str] = {}
        self.is_loading = False

    async def select_image(self, file: SelectedFile | Path | str) -> str:
        """Choose the image to upload; returns its data-URL preview."""
        if not isinstance(file, SelectedFile):
            file = await SelectedFile.from_path(file)
        self.image = file
        self.preview_url = encode_data_url(file.content, file.content_type)
        return self.preview_url

    async def submit(self) -> MutationRun | None:
        try:
            form = validate_form(PetPostForm, self.values)
        except FormValidationError as e:
            self.errors = e.errors
            return None
        self.errors = {}

        if self.image is None:
            self.app.notifier.error("Please select an image")
            return None

        user_id = self.app.session.user_id
        if user_id is None:
            self.app.router.navigate(AUTH)
            return None

        self.is_loading = True
        try:
            run = await self.app.create_post.mutate(
                NewPost(profile_id=user_id, image=self.image, **form.model_dump())
            )
        finally:
            self.is_loading = False

        if run.succeeded:
            self.reset()
        return run


# =============================================================================
# Profiles
# =============================================================================


class CreateProfileView(View):
    """Profile creation form with an avatar preview."""

    def __init__(self, app: "PetShareApp"):
        super().__init__(app)
        self.save = save_profile_mutation(
            app.data,
            app.avatars,
            app.session,
            app.cache,
            app.notifier,
            on_success=lambda _: app.router.navigate(HOME),
            on_auth_required=self._redirect_to_auth,
        )
        self.reset()

    def reset(self) -> None:
        self.values: dict[str, str] = {"username": "", "email": "", "bio": "", "location": ""}
        self.avatar: SelectedFile | None = None
        self.avatar_preview: str | None = None
        self.errors: dict[str, str] = {}

    def _redirect_to_auth(self, exc: Exception) -> None:
        logger.info("No identity for profile save; sending to sign-in")
        self.app.router.navigate(AUTH)

    @property
    def avatar_initial(self) -> str:
        username = self.values["username"]
        return username[0].upper() if username else "?"

    @property
    def is_loading(self) -> bool:
        return self.save.is_pending

    @property
    def can_submit(self) -> bool:
        return not self.is_loading and bool(self.values["username"])

    async def select_avatar(self, file: SelectedFile | Path | str) -> str:
        if not isinstance(file, SelectedFile):
            file = await SelectedFile.from_path(file)
        self.avatar = file
        self.avatar_preview = encode_data_url(file.content, file.content_type)
        return self.avatar_preview

    async def submit(self) -> MutationRun | None:
        try:
            form = validate_form(ProfileForm, self.values)
        except FormValidationError as e:
            self.errors = e.errors
            return None
        self.errors = {}
        return await self.save.mutate(ProfileSubmission(avatar=self.avatar, **form.model_dump()))


class ProfileView(View):
    """The caller's own profile."""

    def __init__(self, app: "PetShareApp"):
        super().__init__(app)
        self.profile_id: str | None = None

    async def mount(self) -> None:
        await super().mount()
        try:
            user = await self.app.session.current_user()
        except AuthRequiredError:
            self.app.router.navigate(AUTH)
            return
        except RemoteOperationError as e:
            logger.warning(f"Could not read identity for profile page: {e}")
            self.app.router.navigate(AUTH)
            return

        self.profile_id = user.id
        subscription = self._watch(profile_key(user.id), lambda: self.app.data.fetch_profile(user.id))
        try:
            await subscription.fetch()
        except RemoteOperationError as exc:
            logger.info(f"No readable profile for {user.id} [{exc.code}]; sending to profile creation")
            self.app.router.navigate(CREATE_PROFILE)

    @property
    def profile(self) -> Profile | None:
        if self.profile_id is None:
            return None
        return self.app.cache.get_query_data(profile_key(self.profile_id))

    @property
    def is_loading(self) -> bool:
        return self.profile is None

    @property
    def bio(self) -> str:
        return (self.profile and self.profile.bio) or "No bio provided"

    @property
    def location(self) -> str:
        return (self.profile and self.profile.location) or "No location provided"

    @property
    def email(self) -> str:
        return (self.profile and self.profile.email) or "No email provided"

    def reset(self) -> None:
        self.profile_id = None


class MyPostsView(View):
    """The caller's own posts, with delete."""

    def __init__(self, app: "PetShareApp"):
        super().__init__(app)
        self.profile_id: str | None = None
        self.error: Exception | None = None

    async def mount(self) -> None:
        await super().mount()
        try:
            user = self.app.session.require_user()
        except AuthRequiredError:
            self.app.router.navigate(AUTH)
            return

        self.profile_id = user.id
        subscription = self._watch(user_posts_key(user.id), lambda: self.app.data.fetch_user_posts(user.id))
        try:
            await subscription.fetch()
        except RemoteOperationError as exc:
            logger.warning(f"Reading posts of {user.id} failed: {exc}")
            self.error = exc

    @property
    def posts(self) -> list[Post]:
        if self.profile_id is None:
            return []
        return self.app.cache.get_query_data(user_posts_key(self.profile_id)) or []

    async def delete(self, post_id: str) -> MutationRun:
        return await self.app.delete_post.mutate(post_id)

    def reset(self) -> None:
        self.profile_id = None
        self.error = None


__all__ = [
    "Router",
    "View",
    "IndexView",
    "GalleryView",
    "PostCardView",
    "PostReactionsView",
    "CommentSectionView",
    "PetPostFormView",
    "CreateProfileView",
    "ProfileView",
    "MyPostsView",
    "posts_key",
    "user_posts_key",
    "reactions_key",
    "comments_key",
    "profile_key",
    "HOME",
    "AUTH",
    "CREATE_PROFILE",
    "GALLERY",
]
