"""Utility functions for PetShare.

This module provides common helper functions for datetime handling,
upload naming and file previews.
"""

import asyncio
import base64
import mimetypes
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse ISO8601 timestamp string into timezone-aware UTC datetime.

    Args:
        value: ISO8601 timestamp string, datetime object, or None

    Returns:
        Parsed timezone-aware datetime in UTC, or None if input is None

    Raises:
        ValueError: If timestamp format is invalid

    Example:
        >>> dt = parse_datetime("2024-01-15T10:30:00.123456+00:00")
        >>> dt.tzinfo
        datetime.timezone.utc
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    dt = dateutil_parser.isoparse(value)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def utc_now() -> datetime:
    """Get current UTC timestamp as timezone-aware datetime."""
    return datetime.now(UTC)


def utc_now_iso() -> str:
    """Get current UTC timestamp as ISO8601 string with 'Z' suffix.

    Example:
        >>> utc_now_iso().endswith('Z')
        True
    """
    return format_iso(utc_now())  # type: ignore[return-value]


def format_iso(dt: datetime | None) -> str | None:
    """Format datetime as ISO8601 string with 'Z' suffix.

    Example:
        >>> from datetime import UTC
        >>> format_iso(datetime(2024, 1, 15, 10, 30, tzinfo=UTC))
        '2024-01-15T10:30:00Z'
    """
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")


def file_extension(filename: str) -> str:
    """Return the extension of a filename without the leading dot.

    Files without an extension yield the whole name, matching a plain
    split on the last dot.

    Example:
        >>> file_extension("biscuit.nap.JPG")
        'JPG'
        >>> file_extension("README")
        'README'
    """
    return filename.rsplit(".", 1)[-1]


def unique_object_name(filename: str, prefix: str | None = None) -> str:
    """Build a collision-free storage object name.

    The name is a random UUID plus the original file extension, optionally
    prefixed with an owner id (``<prefix>-<uuid>.<ext>``).

    Example:
        >>> unique_object_name("dog.png").endswith(".png")
        True
    """
    token = uuid.uuid4().hex
    stem = f"{prefix}-{token}" if prefix else token
    return f"{stem}.{file_extension(filename)}"


def guess_content_type(filename: str) -> str:
    """Guess a MIME type from a filename, defaulting to octet-stream."""
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


def encode_data_url(content: bytes, content_type: str) -> str:
    """Encode bytes as a ``data:`` URL.

    Example:
        >>> encode_data_url(b"hi", "text/plain")
        'data:text/plain;base64,aGk='
    """
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


async def read_file_bytes(path: Path) -> bytes:
    """Read a local file without blocking the event loop."""
    return await asyncio.to_thread(Path(path).read_bytes)


def ensure_list(value: Any) -> list[Any]:
    """Ensure value is a list, wrapping if necessary.

    Example:
        >>> ensure_list({"id": 1})
        [{'id': 1}]
        >>> ensure_list(None)
        []
    """
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
