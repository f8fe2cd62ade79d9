"""Data models for PetShare.

This module defines Pydantic models for the rows returned by the remote
store and for the payloads written to it.

Models are organized into three sections:
1. Remote store envelopes (errors)
2. Entity rows (profiles, posts, reactions, comments)
3. Write payloads and identity/upload values
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from petshare.utils import guess_content_type, parse_datetime, read_file_bytes, utc_now_iso

# =============================================================================
# Section 1: Remote Store Envelopes
# =============================================================================


class StoreError(BaseModel):
    """Structured error returned by the remote store.

    Attributes:
        code: Machine-readable code (e.g. "23505" for a uniqueness violation)
        message: Human-readable message
        details: Optional extra detail from the store
        hint: Optional hint from the store
        status: HTTP status of the failed call, when there was one
    """

    model_config = ConfigDict(extra="ignore")

    code: str
    message: str
    details: Optional[str] = None
    hint: Optional[str] = None
    status: Optional[int] = None

    @field_validator("code", mode="before")
    @classmethod
    def _coerce_code(cls, v: Any) -> str:
        return str(v)


# =============================================================================
# Section 2: Entity Rows
# =============================================================================


class ProfileSummary(BaseModel):
    """Author fields denormalized onto posts and comments by a join.

    Attributes:
        username: Display name of the author
        avatar_url: Public avatar URL
    """

    model_config = ConfigDict(extra="ignore")

    username: str
    avatar_url: Optional[str] = None

    @property
    def initial(self) -> str:
        """Uppercase first letter of the username, for avatar fallbacks."""
        return self.username[:1].upper()


class Profile(BaseModel):
    """A user profile, keyed by the identity's user id.

    Attributes:
        id: User id from the identity provider
        username: Unique username
        email: Contact email
        bio: Free-text bio
        location: Free-text location
        avatar_url: Public avatar URL
        updated_at: Last update timestamp (UTC)
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    username: str
    email: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    avatar_url: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("updated_at", mode="before")
    @classmethod
    def _coerce_updated_at(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)


class Post(BaseModel):
    """A pet photo post.

    Attributes:
        id: Generated post id
        profile_id: Owning profile id
        pet_name: Name of the pet
        pet_breed: Optional breed
        pet_age: Optional age
        photo_url: Public image URL
        caption: Caption text
        created_at: Creation timestamp (UTC)
        profile: Author summary from the ``profiles`` join
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    profile_id: Optional[str] = None
    pet_name: str
    pet_breed: Optional[str] = None
    pet_age: Optional[str] = None
    photo_url: str
    caption: str
    created_at: Optional[datetime] = None
    profile: Optional[ProfileSummary] = Field(None, alias="profiles")

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    @property
    def details(self) -> str | None:
        """Breed and age line, or None when neither is set."""
        parts = []
        if self.pet_breed:
            parts.append(f"Breed: {self.pet_breed}")
        if self.pet_age:
            parts.append(f"Age: {self.pet_age}")
        return " • ".join(parts) or None


class Reaction(BaseModel):
    """A reaction (heart) by a profile on a post."""

    model_config = ConfigDict(extra="ignore")

    id: str
    post_id: str
    profile_id: str


class Comment(BaseModel):
    """A comment on a post.

    Attributes:
        id: Generated comment id
        post_id: Post the comment belongs to
        profile_id: Authoring profile id
        content: Trimmed, non-empty comment text
        created_at: Creation timestamp (UTC)
        profile: Author summary from the ``profiles`` join
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    post_id: str
    profile_id: str
    content: str
    created_at: Optional[datetime] = None
    profile: Optional[ProfileSummary] = Field(None, alias="profiles")

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)


# =============================================================================
# Section 3: Write Payloads and Identity/Upload Values
# =============================================================================


class PostCreate(BaseModel):
    """Insert payload for a new post."""

    profile_id: str
    pet_name: str
    pet_breed: Optional[str] = None
    pet_age: Optional[str] = None
    photo_url: str
    caption: str


class ReactionCreate(BaseModel):
    """Insert payload for a reaction."""

    post_id: str
    profile_id: str


class CommentCreate(BaseModel):
    """Insert payload for a comment; content is stored trimmed."""

    post_id: str
    profile_id: str
    content: str

    @field_validator("content")
    @classmethod
    def _trim_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Comment cannot be empty")
        return v


class ProfileUpsert(BaseModel):
    """Upsert payload for a profile, keyed on ``id``."""

    id: str
    username: str
    email: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    avatar_url: Optional[str] = None
    updated_at: str = Field(default_factory=utc_now_iso)


class SelectedFile(BaseModel):
    """A local file chosen for upload.

    Attributes:
        name: Original file name (its extension is kept on upload)
        content: Raw bytes
        content_type: MIME type
    """

    name: str
    content: bytes
    content_type: str

    @classmethod
    async def from_path(cls, path: Path | str) -> "SelectedFile":
        """Load a file from disk without blocking the event loop."""
        path = Path(path)
        content = await read_file_bytes(path)
        return cls(name=path.name, content=content, content_type=guess_content_type(path.name))


class AuthUser(BaseModel):
    """Identity as reported by the identity provider."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None


class AuthSession(BaseModel):
    """Tokens plus user returned by a successful sign-in."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    user: AuthUser
