"""
Shared field checks for vault models.
"""

import re
from datetime import datetime

from histovault.utils.timestamps import ensure_utc_optional

HASH_KEY_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def check_hash_key(value: str | None) -> str | None:
    """Hash keys are 64 lowercase hex characters."""
    if value is None:
        return None
    if not isinstance(value, str) or not HASH_KEY_PATTERN.match(value):
        raise ValueError(f"not a 64-character lowercase hex key: {value!r}")
    return value


def check_utc(value: datetime | None) -> datetime | None:
    """Normalize timestamps to aware UTC (naive values are taken as UTC)."""
    return ensure_utc_optional(value)
