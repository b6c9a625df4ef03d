"""
EntityRecord model: one row of an entity store (hub).
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .keys import check_hash_key, check_utc


class EntityRecord(BaseModel):
    """
    A distinct business key and its surrogate key.

    Attributes:
        entity_key: Surrogate key derived from the business key
        business_key: Canonical business key fields (discriminator last)
        first_seen: Load time of the first batch that carried the key
        source_tag: Source that first delivered the key
        source_table: Discriminator or ghost marker, if any
    """

    entity_key: str
    business_key: tuple[str, ...] = ()
    first_seen: datetime
    source_tag: str = Field(..., min_length=1)
    source_table: str | None = None

    @field_validator("entity_key")
    @classmethod
    def check_key(cls, v):
        return check_hash_key(v)

    @field_validator("first_seen")
    @classmethod
    def check_first_seen(cls, v):
        return check_utc(v)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "entity_key": "3f79bb7b435b05321651daefd374cdc681dc06faa65e374e38337b88ca046dea",
                "business_key": ["1", "company"],
                "first_seen": "2024-03-01T00:00:00Z",
                "source_tag": "werkportal",
                "source_table": "company",
            }
        }
