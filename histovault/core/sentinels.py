"""
Reserved sentinel ("ghost") keys.

Two surrogate keys are reserved in every entity store: one for business
keys that are unknown or not yet resolved, one for keys that are invalid.
Relationships that cannot point at a real entity point at one of these
instead, so downstream joins stay equi-joins.
"""

from histovault.utils.timestamps import GHOST_LOAD_TIME

# All-zero and all-one bit patterns, rendered in the store's hex encoding
UNKNOWN_KEY = "0" * 64
ERROR_KEY = "f" * 64

SENTINEL_KEYS = frozenset({UNKNOWN_KEY, ERROR_KEY})

SENTINEL_SOURCE_TABLES = {
    UNKNOWN_KEY: "GHOST_UNKNOWN",
    ERROR_KEY: "GHOST_ERROR",
}

SYSTEM_SOURCE_TAG = "SYSTEM"

__all__ = [
    "UNKNOWN_KEY",
    "ERROR_KEY",
    "SENTINEL_KEYS",
    "SENTINEL_SOURCE_TABLES",
    "SYSTEM_SOURCE_TAG",
    "GHOST_LOAD_TIME",
    "is_sentinel",
]


def is_sentinel(key: str | None) -> bool:
    """True if the key is one of the reserved ghost keys"""
    return key in SENTINEL_KEYS
