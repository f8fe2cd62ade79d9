"""PetShare - client-side data layer for a pet photo-sharing app.

This package provides the data-access functions, query cache, mutation
executors and headless views of a pet photo-sharing social app whose data,
identity and file storage live on a hosted backend project.

Example:
    >>> from petshare import PetShareApp
    >>> import asyncio
    >>>
    >>> async def main():
    ...     async with PetShareApp() as app:
    ...         gallery = app.gallery()
    ...         await gallery.mount()
    ...         for card in gallery.cards:
    ...             print(card.post.pet_name, card.reactions.count)
    >>>
    >>> asyncio.run(main())
"""

__version__ = "0.1.0"

from petshare.api import AsyncBackendClient, RemoteOperationError, StoreResponse  # noqa: E402
from petshare.app import PetShareApp  # noqa: E402
from petshare.cache import QueryCache, QueryState, QueryStatus  # noqa: E402
from petshare.config import QueryTag, settings  # noqa: E402
from petshare.forms import FormValidationError  # noqa: E402
from petshare.models import (  # noqa: E402
    Comment,
    Post,
    Profile,
    ProfileSummary,
    Reaction,
    SelectedFile,
    StoreError,
)
from petshare.mutations import MUTATION_INVALIDATIONS, Mutation, MutationRun, MutationStatus  # noqa: E402
from petshare.repository import DataAccess, Repository  # noqa: E402
from petshare.session import AuthRequiredError, IdentityClient, SessionContext  # noqa: E402

__all__ = [
    # Main components
    "PetShareApp",
    "AsyncBackendClient",
    "DataAccess",
    "Repository",
    "QueryCache",
    "IdentityClient",
    "SessionContext",
    # Mutations
    "Mutation",
    "MutationRun",
    "MutationStatus",
    "MUTATION_INVALIDATIONS",
    # Configuration
    "settings",
    "QueryTag",
    # Errors
    "RemoteOperationError",
    "FormValidationError",
    "AuthRequiredError",
    # Models
    "StoreResponse",
    "StoreError",
    "QueryState",
    "QueryStatus",
    "Post",
    "Profile",
    "ProfileSummary",
    "Reaction",
    "Comment",
    "SelectedFile",
]
