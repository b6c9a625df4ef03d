"""
Deterministic surrogate key derivation.

A surrogate key is the SHA-256 digest of the canonical, escaped and joined
business key fields, rendered as 64 lowercase hex characters. The function
is pure: the same business key yields the same surrogate key in every
process, which is what lets independent load cycles agree on identity.
"""

import hashlib
from typing import Any, Mapping, Sequence

from histovault.core.errors import KeyDerivationError
from histovault.core.sentinels import SENTINEL_KEYS

from .canonical import canonical_fields, join_canonical

HASH_ALGORITHM = "sha256"
HASH_HEX_LENGTH = 64


def hash_text(text: str) -> str:
    """
    Hash canonical text into the store's fixed-width key encoding.

    Args:
        text: Joined canonical text

    Returns:
        64 lowercase hex characters
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def is_null_key(fields: Sequence[Any]) -> bool:
    """True if every business key field is null (discriminator not included)."""
    return all(value is None for value in fields)


class KeyDeriver:
    """
    Derives surrogate keys from business keys.

    The optional discriminator separates key spaces that are reused across
    logically distinct source feeds (e.g. the same numeric id in a client
    table and a supplier table). It is appended as the final field.
    """

    algorithm = HASH_ALGORITHM

    def canonical_key(
        self,
        fields: Sequence[Any],
        discriminator: str | None = None,
        field_names: Sequence[str] | None = None,
    ) -> tuple[str, ...]:
        """
        Canonicalize a business key.

        Args:
            fields: Ordered business key field values
            discriminator: Optional source discriminator
            field_names: Optional field names for error messages

        Returns:
            Tuple of canonical field texts

        Raises:
            KeyDerivationError: If the key is empty or a field is unrepresentable
        """
        if isinstance(fields, (str, bytes)):
            raise KeyDerivationError("business key must be a sequence of fields, not a scalar")
        if len(fields) == 0:
            raise KeyDerivationError("business key must have at least one field")

        canonical = canonical_fields(fields, field_names)
        if discriminator is not None:
            canonical = canonical + (str(discriminator),)
        return canonical

    def derive(
        self,
        fields: Sequence[Any],
        discriminator: str | None = None,
        field_names: Sequence[str] | None = None,
    ) -> str:
        """
        Derive the surrogate key of a business key.

        Args:
            fields: Ordered business key field values
            discriminator: Optional source discriminator
            field_names: Optional field names for error messages

        Returns:
            64-character lowercase hex surrogate key

        Raises:
            KeyDerivationError: If the key cannot be canonicalized
        """
        canonical = self.canonical_key(fields, discriminator, field_names)
        return self.derive_canonical(canonical)

    def derive_canonical(self, canonical: Sequence[str]) -> str:
        """Hash an already canonical key tuple."""
        key = hash_text(join_canonical(canonical))
        if key in SENTINEL_KEYS:
            # Astronomically unlikely, but a real key must never alias a ghost
            raise KeyDerivationError(f"derived key {key} collides with a reserved sentinel key")
        return key

    def row_key_fields(
        self,
        row: Mapping[str, Any],
        key_columns: Sequence[str],
        discriminator: str | None = None,
        discriminator_column: str | None = None,
    ) -> tuple[list[Any], str | None]:
        """
        Pick the business key fields and discriminator of a source row.

        Args:
            row: Source row values
            key_columns: Business key columns, in key order
            discriminator: Constant discriminator
            discriminator_column: Column holding the discriminator (overrides
                the constant)

        Returns:
            (fields, discriminator), ready for derive()

        Raises:
            KeyDerivationError: If the discriminator column is null or missing
        """
        fields = [row.get(column) for column in key_columns]
        if discriminator_column is not None:
            discriminator = row.get(discriminator_column)
            if discriminator is None:
                raise KeyDerivationError("discriminator is missing", discriminator_column)
        return fields, discriminator
