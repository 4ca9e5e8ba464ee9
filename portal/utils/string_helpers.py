"""
String Helpers: Payload Key Convention Converter.

The backend answers in a mix of ``snake_case`` (database rows) and
``camelCase`` (hand-built response objects).  Every payload is normalised
to snake_case here before it reaches a model, and outbound bodies are
converted back to the camelCase the backend validators expect.
"""

from __future__ import annotations

import re
from typing import Union, overload

__all__ = [
    "to_snake_case",
    "to_camel_case",
    "normalize_keys",
    "denormalize_keys",
]

JsonValue = Union[
    str,
    int,
    float,
    bool,
    None,
    dict[str, "JsonValue"],
    list["JsonValue"],
]

# "HTTPStatus" -> "HTTP_Status"
_RE_UPPER_RUN = re.compile(r"([A-Z]+)([A-Z][a-z])")

# "firstName" -> "first_Name"
_RE_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")

# "requires2FA" -> "requires_2FA", "sha256Hash" -> "sha_256_Hash"
_RE_DIGIT_RUN = re.compile(r"([a-z])(\d)")
_RE_DIGIT_WORD = re.compile(r"(\d)([A-Z][a-z])")

_RE_MULTI_UNDERSCORE = re.compile(r"_+")


def to_snake_case(name: str) -> str:
    """Convert a camelCase, PascalCase, or mixed-case string to snake_case.

    Examples::

        firstName       -> first_name
        accountVerified -> account_verified
        requires2FA     -> requires_2fa
        requires_2fa    -> requires_2fa
        manualEntryKey  -> manual_entry_key
        qrCode          -> qr_code
    """
    s1 = _RE_UPPER_RUN.sub(r"\1_\2", name)
    s2 = _RE_DIGIT_RUN.sub(r"\1_\2", s1)
    s3 = _RE_DIGIT_WORD.sub(r"\1_\2", s2)
    s4 = _RE_CAMEL_BOUNDARY.sub(r"\1_\2", s3)
    return _RE_MULTI_UNDERSCORE.sub("_", s4).lower()


def to_camel_case(name: str) -> str:
    """Convert a snake_case string to camelCase (``first_name`` -> ``firstName``)."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


@overload
def normalize_keys(data: dict[str, JsonValue]) -> dict[str, JsonValue]: ...


@overload
def normalize_keys(data: list[JsonValue]) -> list[JsonValue]: ...


@overload
def normalize_keys(data: JsonValue) -> JsonValue: ...


def normalize_keys(
    data: Union[dict[str, JsonValue], list[JsonValue], JsonValue],
) -> Union[dict[str, JsonValue], list[JsonValue], JsonValue]:
    """Recursively convert all dictionary keys to snake_case.

    When a payload carries both spellings of one key (``first_name`` and
    ``firstName``) the camelCase value wins unless it is null.  The backend
    builds its camelCase fields by hand from the current row, while the
    snake_case ones may be raw columns spread in alongside them.
    """
    if isinstance(data, dict):
        normalized: dict[str, JsonValue] = {}
        for key, value in data.items():
            snake = to_snake_case(key)
            converted = normalize_keys(value)
            camel = snake != key
            if normalized.get(snake) is None or (camel and converted is not None):
                normalized[snake] = converted
        return normalized
    if isinstance(data, list):
        return [normalize_keys(item) for item in data]
    return data


def denormalize_keys(data: dict[str, JsonValue]) -> dict[str, JsonValue]:
    """Convert the top-level keys of an outbound body to camelCase."""
    return {to_camel_case(key): value for key, value in data.items()}
