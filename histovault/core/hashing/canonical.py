"""
Canonical text form of key and attribute fields.

Surrogate keys and diff hashes are only stable if every process renders the
same field values to the same text. The rules below are fixed for the life
of a store: changing any of them changes every hash already written.

Rules per type:
    None            -> "" (null and empty string collapse on purpose)
    str             -> unchanged
    bool            -> "true" / "false"
    int             -> decimal digits
    float           -> repr() (finite values only)
    Decimal         -> plain positional notation (finite values only)
    datetime        -> ISO 8601, aware values converted to UTC first
    date, time      -> ISO 8601
    UUID            -> lowercase hyphenated form
    bytes           -> lowercase hex

Fields are escaped and joined with FIELD_SEPARATOR so that the joined text
is unambiguous: ("ab", "c") and ("a", "bc") never render alike.
"""

import math
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Iterable

from histovault.core.errors import KeyDerivationError

FIELD_SEPARATOR = "|"
ESCAPE_CHAR = "\\"


def canonicalize_value(value: Any, field_name: str | None = None) -> str:
    """
    Render a single field value to its canonical text.

    Args:
        value: Field value
        field_name: Field name, used in error messages

    Returns:
        Canonical text

    Raises:
        KeyDerivationError: If the value has no canonical form
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    # bool is a subclass of int and must be checked first
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise KeyDerivationError(f"non-finite float {value!r} has no canonical form", field_name, value)
        return repr(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise KeyDerivationError(f"non-finite decimal {value!r} has no canonical form", field_name, value)
        return format(value, "f")
    # datetime is a subclass of date and must be checked first
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()

    raise KeyDerivationError(
        f"unsupported type {type(value).__name__} has no canonical form",
        field_name,
        value,
    )


def escape_field(text: str) -> str:
    """Escape the escape character and the separator inside one field."""
    return text.replace(ESCAPE_CHAR, ESCAPE_CHAR * 2).replace(
        FIELD_SEPARATOR, ESCAPE_CHAR + FIELD_SEPARATOR
    )


def canonical_fields(values: Iterable[Any], field_names: Iterable[str] | None = None) -> tuple[str, ...]:
    """
    Canonicalize an ordered sequence of field values.

    Args:
        values: Field values in contract order
        field_names: Optional names, used in error messages

    Returns:
        Tuple of canonical texts
    """
    values = list(values)
    names = list(field_names) if field_names is not None else [None] * len(values)
    return tuple(canonicalize_value(value, name) for value, name in zip(values, names))


def join_canonical(fields: Iterable[str]) -> str:
    """Escape and join already canonical fields."""
    return FIELD_SEPARATOR.join(escape_field(text) for text in fields)
