"""Page session wiring.

``PetShareApp`` owns everything one page session shares: the backend
client, the identity context, the data-access functions, the storage
buckets, the query cache, the notifier, the router and the mutation
executors used by the views.

Example:
    >>> async with PetShareApp() as app:
    ...     await app.identity.sign_in_with_password("a@example.com", "hunter22")
    ...     gallery = app.gallery()
    ...     await gallery.mount()
    ...     print([card.post.pet_name for card in gallery.cards])
"""

import uuid
from typing import Any

from petshare.api import AsyncBackendClient
from petshare.cache import QueryCache
from petshare.config import Settings, settings
from petshare.interfaces import IBackendClient, IIdentityProvider
from petshare.logging import clear_log_context, logger, set_log_context
from petshare.mutations import (
    ReactionLocks,
    add_comment_mutation,
    create_post_mutation,
    delete_post_mutation,
    toggle_reaction_mutation,
)
from petshare.notifications import Notifier
from petshare.repository import DataAccess
from petshare.session import IdentityClient, SessionContext
from petshare.storage import ObjectStore
from petshare.telemetry import initialize_telemetry
from petshare.views import (
    CreateProfileView,
    GalleryView,
    IndexView,
    MyPostsView,
    PetPostFormView,
    ProfileView,
    Router,
)


class PetShareApp:
    """One page session.

    Args:
        client: Backend client (defaults to an ``AsyncBackendClient`` built
            from settings)
        identity: Identity provider (defaults to an ``IdentityClient`` over
            ``client``)
        config: Settings (defaults to the global settings)
        notifier: Toast sink
        router: Navigator
    """

    def __init__(
        self,
        client: IBackendClient | None = None,
        identity: IIdentityProvider | None = None,
        config: Settings | None = None,
        notifier: Notifier | None = None,
        router: Router | None = None,
    ):
        self.config = config or settings
        self.session_id = uuid.uuid4().hex[:12]

        self.client = client or AsyncBackendClient(self.config.supabase_url, self.config.supabase_anon_key)
        if identity is None:
            if not isinstance(self.client, AsyncBackendClient):
                raise ValueError("An identity provider is required with a custom backend client")
            identity = IdentityClient(self.client)
        self.identity = identity

        self.session = SessionContext(self.identity)
        self.data = DataAccess(self.client, self.config)
        self.photos = ObjectStore(self.client, self.config.photo_bucket, self.config.upload_cache_control)
        self.avatars = ObjectStore(self.client, self.config.avatar_bucket, self.config.upload_cache_control)
        self.cache = QueryCache(self.config.query_stale_timedelta)
        self.notifier = notifier or Notifier()
        self.router = router or Router()

        self.reaction_locks = ReactionLocks()
        self.toggle_reaction = toggle_reaction_mutation(self.data, self.cache, self.notifier, self.reaction_locks)
        self.add_comment = add_comment_mutation(self.data, self.cache, self.notifier)
        self.delete_post = delete_post_mutation(self.data, self.cache, self.notifier)
        self.create_post = create_post_mutation(self.data, self.photos, self.cache, self.notifier)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> "PetShareApp":
        """Initialize tracing and read the current identity."""
        set_log_context(session_id=self.session_id)
        initialize_telemetry(self.config)
        await self.session.start()
        logger.info(
            f"Page session {self.session_id} started "
            f"(authenticated={self.session.is_authenticated}, key={self.config.redact_key()})"
        )
        return self

    async def close(self) -> None:
        """Stop following identity changes, drop the cache and close connections."""
        self.session.stop()
        self.cache.clear()
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
        logger.info(f"Page session {self.session_id} closed")
        clear_log_context()

    async def __aenter__(self) -> "PetShareApp":
        return await self.start()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def index(self) -> IndexView:
        return IndexView(self)

    def gallery(self) -> GalleryView:
        return GalleryView(self)

    def post_form(self) -> PetPostFormView:
        return PetPostFormView(self)

    def create_profile(self) -> CreateProfileView:
        return CreateProfileView(self)

    def profile(self) -> ProfileView:
        return ProfileView(self)

    def my_posts(self) -> MyPostsView:
        return MyPostsView(self)


__all__ = ["PetShareApp"]
