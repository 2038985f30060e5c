"""
Common schemas and utilities shared across all services.
"""

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


# Largest object size representable as a signed 64-bit integer
MAX_BYTE_SIZE = 2 ** 63 - 1


def _parse_byte_size(value):
    """Accept an int or a decimal string; anything else is rejected."""
    if isinstance(value, bool):
        raise ValueError("size must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped)
    raise ValueError("size must be a non-negative integer or a decimal string")


# Byte counts travel as decimal strings in JSON and as 64-bit ints everywhere else.
ByteSize = Annotated[
    int,
    BeforeValidator(_parse_byte_size),
    Field(ge=0, le=MAX_BYTE_SIZE),
    PlainSerializer(lambda v: str(v), return_type=str, when_used="json"),
]


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases on the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorKind(str, Enum):
    """Discriminant for every error the API returns."""
    CLIENT_INPUT = "client_input"
    TRANSIENT = "transient"
    SESSION = "session"
    INCONSISTENCY = "inconsistency"
    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    kind: ErrorKind = ErrorKind.INTERNAL
    detail: str
    error_code: str | None = None
    reset: int | None = None  # Seconds until retry is allowed (rate_limited only)
