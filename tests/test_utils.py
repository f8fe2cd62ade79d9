"""Unit tests for utility functions."""

from datetime import UTC, datetime

import pytest

from petshare.utils import (
    encode_data_url,
    ensure_list,
    file_extension,
    format_iso,
    guess_content_type,
    parse_datetime,
    read_file_bytes,
    unique_object_name,
    utc_now,
    utc_now_iso,
)


class TestDatetimeFunctions:
    """Tests for datetime utility functions."""

    def test_parse_datetime_valid_iso(self):
        """Test parsing a store timestamp."""
        dt = parse_datetime("2024-01-15T10:30:00.123456+00:00")

        assert dt is not None
        assert dt.year == 2024
        assert dt.microsecond == 123456
        assert dt.tzinfo == UTC

    def test_parse_datetime_with_offset(self):
        """Offsets are normalized to UTC."""
        dt = parse_datetime("2024-01-15T12:30:00+02:00")

        assert dt is not None
        assert dt.hour == 10
        assert dt.tzinfo == UTC

    def test_parse_datetime_naive_datetime(self):
        dt = parse_datetime(datetime(2024, 1, 15, 10, 30))

        assert dt is not None
        assert dt.tzinfo == UTC

    def test_parse_datetime_none(self):
        assert parse_datetime(None) is None

    def test_parse_datetime_invalid(self):
        with pytest.raises(ValueError):
            parse_datetime("not a date")

    def test_utc_now(self):
        assert utc_now().tzinfo == UTC

    def test_utc_now_iso(self):
        assert utc_now_iso().endswith("Z")

    def test_format_iso_valid(self):
        assert format_iso(datetime(2024, 1, 15, 10, 30, tzinfo=UTC)) == "2024-01-15T10:30:00Z"

    def test_format_iso_none(self):
        assert format_iso(None) is None


class TestUploadNaming:
    """Tests for storage object naming."""

    def test_file_extension_uses_last_dot(self):
        assert file_extension("biscuit.nap.JPG") == "JPG"

    def test_file_extension_without_dot(self):
        assert file_extension("README") == "README"

    def test_unique_object_name_keeps_extension(self):
        name = unique_object_name("dog.png")

        stem, ext = name.rsplit(".", 1)
        assert ext == "png"
        assert len(stem) == 32

    def test_unique_object_name_with_prefix(self):
        assert unique_object_name("me.jpg", prefix="user-a").startswith("user-a-")

    def test_unique_object_names_do_not_collide(self):
        names = {unique_object_name("dog.png") for _ in range(100)}

        assert len(names) == 100


class TestFileHelpers:
    """Tests for previews and file loading."""

    def test_guess_content_type(self):
        assert guess_content_type("dog.png") == "image/png"
        assert guess_content_type("dog.jpg") == "image/jpeg"

    def test_guess_content_type_unknown(self):
        assert guess_content_type("blob") == "application/octet-stream"

    def test_encode_data_url(self):
        assert encode_data_url(b"hi", "text/plain") == "data:text/plain;base64,aGk="

    @pytest.mark.asyncio
    async def test_read_file_bytes(self, tmp_path):
        path = tmp_path / "dog.png"
        path.write_bytes(b"\x89PNG")

        assert await read_file_bytes(path) == b"\x89PNG"


class TestListUtilities:
    """Tests for list utility functions."""

    def test_ensure_list_already_list(self):
        assert ensure_list([1, 2]) == [1, 2]

    def test_ensure_list_single_value(self):
        assert ensure_list({"id": 1}) == [{"id": 1}]

    def test_ensure_list_none(self):
        assert ensure_list(None) == []
