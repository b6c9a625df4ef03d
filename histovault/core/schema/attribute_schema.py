"""
Versioned descriptor of the attribute list a satellite fingerprints.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class AttributeSchema(BaseModel):
    """
    Ordered, versioned list of fingerprinted attributes.

    The order of `attributes` is part of the hash contract: reordering,
    adding or removing an attribute changes the diff hash of every row.

    Attributes:
        name: Satellite the schema belongs to
        version: Descriptor version (increments with each change)
        attributes: Ordered attribute names
    """

    name: str = Field(..., min_length=1, max_length=63)
    version: int = Field(1, gt=0)
    attributes: tuple[str, ...] = Field(..., min_length=1)

    @field_validator("attributes")
    @classmethod
    def check_unique(cls, v):
        """Attribute names must be unique within a schema."""
        duplicates = sorted({a for a in v if v.count(a) > 1})
        if duplicates:
            raise ValueError(f"duplicate attributes: {', '.join(duplicates)}")
        return v

    def compare(self, other: "AttributeSchema") -> dict[str, Any]:
        """
        Compare this schema with a newer one.

        Any difference changes every diff hash, so every difference is
        flagged as breaking.

        Args:
            other: Schema to compare against

        Returns:
            Dictionary with added, removed, reordered and breaking keys
        """
        current = list(self.attributes)
        new = list(other.attributes)

        added = [a for a in new if a not in current]
        removed = [a for a in current if a not in new]

        common_current = [a for a in current if a in new]
        common_new = [a for a in new if a in current]
        reordered = common_current != common_new

        return {
            "added": added,
            "removed": removed,
            "reordered": reordered,
            "breaking": bool(added or removed or reordered),
        }

    class Config:
        frozen = True
