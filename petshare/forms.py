"""Form schemas and inline validation.

Forms are validated locally before any remote call. A failed validation
raises ``FormValidationError`` whose ``errors`` map field names to the
message shown next to the field.

Example:
    >>> form = validate_form(PetPostForm, {"pet_name": "Biscuit", "caption": "loves naps"})
    >>> form.pet_breed is None
    True
    >>> validate_form(CommentForm, {"content": "   "})
    Traceback (most recent call last):
    ...
    FormValidationError: content: Comment cannot be empty
"""

from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

F = TypeVar("F", bound=BaseModel)


class FormValidationError(Exception):
    """Local validation failed; nothing was sent to the store.

    Args:
        errors: Field name -> message
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{name}: {message}" for name, message in errors.items()))


def _required(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(message)
    return value


def _optional(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


class PetPostForm(BaseModel):
    """New pet post fields (the image is selected separately)."""

    model_config = ConfigDict(validate_default=True)

    pet_name: str = ""
    pet_breed: Optional[str] = None
    pet_age: Optional[str] = None
    caption: str = ""

    @field_validator("pet_name", mode="before")
    @classmethod
    def _pet_name(cls, v: Optional[str]) -> str:
        return _required(v, "Pet name is required")

    @field_validator("caption", mode="before")
    @classmethod
    def _caption(cls, v: Optional[str]) -> str:
        return _required(v, "Caption is required")

    @field_validator("pet_breed", "pet_age", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return _optional(v)


class CommentForm(BaseModel):
    model_config = ConfigDict(validate_default=True)

    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, v: Optional[str]) -> str:
        return _required(v, "Comment cannot be empty")


class ProfileForm(BaseModel):
    """Profile fields; only the username is required."""

    model_config = ConfigDict(validate_default=True)

    username: str = ""
    email: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None

    @field_validator("username", mode="before")
    @classmethod
    def _username(cls, v: Optional[str]) -> str:
        return _required(v, "Username is required")

    @field_validator("email", "bio", "location", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return _optional(v)


def validation_messages(exc: ValidationError) -> dict[str, str]:
    """Flatten a pydantic ValidationError into field -> first message."""
    errors: dict[str, str] = {}
    for error in exc.errors():
        name = str(error["loc"][0]) if error["loc"] else "__root__"
        ctx_error = (error.get("ctx") or {}).get("error")
        message = str(ctx_error) if error["type"] == "value_error" and ctx_error else error["msg"]
        errors.setdefault(name, message)
    return errors


def validate_form(form_cls: type[F], values: dict[str, Any]) -> F:
    """Validate raw field values.

    Raises:
        FormValidationError: With a message per invalid field
    """
    try:
        return form_cls.model_validate(values)
    except ValidationError as e:
        raise FormValidationError(validation_messages(e)) from e


__all__ = [
    "FormValidationError",
    "PetPostForm",
    "CommentForm",
    "ProfileForm",
    "validate_form",
    "validation_messages",
]
