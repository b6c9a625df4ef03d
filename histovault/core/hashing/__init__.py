"""
Deterministic hashing: surrogate keys and diff hashes.
"""

from .canonical import canonical_fields, canonicalize_value, escape_field, join_canonical
from .fingerprinter import ChangeFingerprinter
from .key_deriver import HASH_HEX_LENGTH, KeyDeriver, hash_text, is_null_key

__all__ = [
    "canonicalize_value",
    "canonical_fields",
    "escape_field",
    "join_canonical",
    "KeyDeriver",
    "ChangeFingerprinter",
    "hash_text",
    "is_null_key",
    "HASH_HEX_LENGTH",
]
