"""Configuration management for PetShare.

This module provides centralized configuration using Pydantic Settings,
read from environment variables and an optional ``.env`` file.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, human-readable output
    - PRODUCTION: JSON logs, tracing enabled
    - TESTING: Minimal logging, no log files, no tracing

Example:
    >>> from petshare.config import settings, QueryTag
    >>> print(settings.photo_bucket)
    pet_photos
    >>> QueryTag.POSTS
    <QueryTag.POSTS: 'posts'>
"""

from datetime import timedelta
from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueryTag(StrEnum):
    """First element of every query-cache key.

    Invalidating a tag invalidates every key that starts with it.
    """

    POSTS = "posts"
    USER_POSTS = "user-posts"
    REACTIONS = "post-reactions"
    COMMENTS = "post-comments"
    PROFILE = "profile"


class SortDirection(StrEnum):
    """Sort direction for remote selects."""

    ASC = "asc"
    DESC = "desc"


class Environment(StrEnum):
    """Runtime environment with specific behavior profiles.

    Attributes:
        DEVELOPMENT: Verbose logging, no tracing
        PRODUCTION: JSON logging, tracing enabled
        TESTING: Errors only, no log file, no tracing
        STAGING: Production-like with INFO logging
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        supabase_url: Base URL of the backend project
        supabase_anon_key: Public (anon) API key sent with every request
        posts_table: Table holding pet posts
        reactions_table: Table holding post reactions
        comments_table: Table holding post comments
        profiles_table: Table holding user profiles
        photo_bucket: Storage bucket for post images
        avatar_bucket: Storage bucket for profile avatars
        upload_cache_control: Cache-Control max-age (seconds) for uploads
        query_stale_seconds: Optional age after which cached queries go stale
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Backend project
    supabase_url: str = Field(
        "http://127.0.0.1:54321",
        alias="SUPABASE_URL",
        description="Base URL of the backend project",
    )
    supabase_anon_key: str = Field(
        ...,
        alias="SUPABASE_ANON_KEY",
        description="Public anon key for the backend project",
    )

    # Tables
    posts_table: str = Field("pet_posts", description="Pet posts table")
    reactions_table: str = Field("post_reactions", description="Post reactions table")
    comments_table: str = Field("post_comments", description="Post comments table")
    profiles_table: str = Field("profiles", description="Profiles table")

    # Storage
    photo_bucket: str = Field("pet_photos", description="Bucket for post images")
    avatar_bucket: str = Field("avatars", description="Bucket for profile avatars")
    upload_cache_control: str = Field(
        "3600",
        description="Cache-Control max-age in seconds applied to uploaded objects",
    )

    # Query cache
    query_stale_seconds: Optional[float] = Field(
        None,
        ge=0,
        description="Seconds before a cached query is stale (None: fresh until invalidated)",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=False,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )
    log_dir: Path = Field(
        Path("./logs"),
        description="Directory for log files when file logging is enabled",
    )

    # Observability (OpenTelemetry)
    enable_tracing: bool = Field(
        default=False,
        description="Enable OpenTelemetry distributed tracing",
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry OTLP endpoint for traces (e.g., http://localhost:4317)",
    )

    @field_validator("supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the project URL so paths can be appended."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("supabase_anon_key")
    @classmethod
    def validate_anon_key(cls, v: str) -> str:
        """Validate anon key format."""
        if not v or len(v) < 20:
            raise ValueError("SUPABASE_ANON_KEY must be at least 20 characters")
        return v

    @field_validator("log_dir", mode="before")
    @classmethod
    def expand_log_dir(cls, v: str | Path) -> Path:
        """Expand and resolve log directory path."""
        return Path(v).expanduser().resolve()

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Apply environment-specific defaults.

        Profiles:
            - PRODUCTION: INFO logging (unless explicit), JSON logs, tracing enabled
            - DEVELOPMENT: DEBUG logging, human-readable, tracing disabled
            - TESTING: ERROR logging, no file logging, no tracing
            - STAGING: INFO logging, JSON logs, tracing enabled

        Returns:
            Modified settings instance with environment-specific adjustments
        """
        if self.environment == Environment.PRODUCTION:
            if self.log_level == "DEBUG":
                self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        elif self.environment == Environment.DEVELOPMENT:
            self.log_level = "DEBUG"
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.TESTING:
            self.log_level = "ERROR"
            self.log_to_file = False
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.STAGING:
            self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        return self

    @property
    def query_stale_timedelta(self) -> timedelta | None:
        """Get the query stale time as timedelta, if configured."""
        if self.query_stale_seconds is None:
            return None
        return timedelta(seconds=self.query_stale_seconds)

    @property
    def log_file(self) -> Path | None:
        """Get the log file path, or None when file logging is disabled."""
        return self.log_dir / "petshare.log" if self.log_to_file else None

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    def redact_key(self, key: Optional[str] = None) -> str:
        """Redact an API key or access token for logging.

        Args:
            key: Key to redact (defaults to supabase_anon_key)

        Returns:
            Redacted key string
        """
        key = key or self.supabase_anon_key
        if not key:
            return "None"
        return f"{key[:8]}...{key[-4:]}" if len(key) > 12 else "***"


def get_settings() -> Settings:
    """Get a settings instance read from the environment.

    Returns:
        Configured Settings instance
    """
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
