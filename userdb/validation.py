"""Input normalisation shared by the console, the scripts and the repository."""
from __future__ import annotations

import logging
from typing import Optional, Union

from .errors import ValidationError

logger = logging.getLogger(__name__)

AGE_MIN = 0
AGE_MAX = 150


def require_text(value: Optional[str], label: str, *, max_length: Optional[int] = None) -> str:
    """Return ``value`` stripped, rejecting blank or overlong input."""

    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} must not be empty")
    if max_length is not None and len(cleaned) > max_length:
        raise ValidationError(f"{label} must be at most {max_length} characters")
    return cleaned


def normalize_email(value: Optional[str]) -> str:
    """Return the stored form of an email address used for lookups."""

    return (value or "").strip()


def parse_age(value: Union[str, int, None]) -> Optional[int]:
    """Parse an age, raising :class:`ValidationError` for bad input.

    Blank input means "unspecified" and yields ``None``.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError("Age must be a whole number")
    if isinstance(value, int):
        age = value
    elif not isinstance(value, str):
        raise ValidationError(f"Age must be a whole number, got {value!r}")
    else:
        text = value.strip()
        if not text:
            return None
        try:
            age = int(text)
        except ValueError as exc:
            raise ValidationError(f"Age must be a whole number, got {text!r}") from exc
    return require_age_in_range(age)


def require_age_in_range(age: Optional[int]) -> Optional[int]:
    if age is not None and not AGE_MIN <= age <= AGE_MAX:
        raise ValidationError(f"Age must be between {AGE_MIN} and {AGE_MAX}")
    return age


def normalize_age(value: Union[str, int, None]) -> Optional[int]:
    """Like :func:`parse_age` but degrade invalid input to ``None``."""

    try:
        return parse_age(value)
    except ValidationError as exc:
        logger.info("Treating age as unspecified: %s", exc)
        return None


def parse_user_id(value: Optional[str]) -> int:
    text = (value or "").strip()
    try:
        user_id = int(text)
    except ValueError as exc:
        raise ValidationError(f"Invalid user ID: {text!r}") from exc
    if user_id <= 0:
        raise ValidationError(f"Invalid user ID: {text!r}")
    return user_id


__all__ = [
    "AGE_MAX",
    "AGE_MIN",
    "normalize_age",
    "normalize_email",
    "parse_age",
    "parse_user_id",
    "require_age_in_range",
    "require_text",
]
