"""
Change detection by content hashing.
"""

from typing import Any, Mapping

from histovault.core.schema.attribute_schema import AttributeSchema

from .canonical import canonical_fields, join_canonical
from .key_deriver import hash_text


class ChangeFingerprinter:
    """
    Computes the diff hash of an attribute payload.

    The fingerprinted attribute list comes from an explicit AttributeSchema;
    attributes missing from a payload are treated as null, extra payload
    keys are ignored.
    """

    def __init__(self, schema: AttributeSchema):
        self.schema = schema

    def project(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Pick the schema's attributes out of a row, in schema order."""
        return {name: row.get(name) for name in self.schema.attributes}

    def fingerprint(self, payload: Mapping[str, Any]) -> str:
        """
        Compute the diff hash of a payload.

        Args:
            payload: Attribute values keyed by name

        Returns:
            64-character lowercase hex diff hash

        Raises:
            KeyDerivationError: If an attribute value has no canonical form
        """
        values = [payload.get(name) for name in self.schema.attributes]
        return hash_text(join_canonical(canonical_fields(values, self.schema.attributes)))
