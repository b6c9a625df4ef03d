"""
AttributeVersion model: one version in an attribute history store (satellite).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .keys import check_hash_key, check_utc


class AttributeVersion(BaseModel):
    """
    One recorded state of an entity's attributes.

    Only `is_current` and `end_time` change after insertion, and only
    through the reconcile pass.

    Attributes:
        entity_key: Entity the version belongs to
        diff_hash: Fingerprint of the payload
        load_time: When the version was loaded
        source_tag: Source that delivered the version
        is_current: Whether this is the latest version of the entity
        end_time: Load time of the chronological successor, if any
        payload: Fingerprinted attribute values
        schema_version: Version of the attribute schema that produced diff_hash
        load_seq: Store-assigned insertion sequence (row identity)
    """

    entity_key: str
    diff_hash: str
    load_time: datetime
    source_tag: str = Field(..., min_length=1)
    is_current: bool = True
    end_time: datetime | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    schema_version: int = Field(1, gt=0)
    load_seq: int | None = None

    @field_validator("entity_key", "diff_hash")
    @classmethod
    def check_keys(cls, v):
        return check_hash_key(v)

    @field_validator("load_time", "end_time")
    @classmethod
    def check_times(cls, v):
        return check_utc(v)

    class Config:
        json_schema_extra = {
            "example": {
                "entity_key": "3f79bb7b435b05321651daefd374cdc681dc06faa65e374e38337b88ca046dea",
                "diff_hash": "9c1185a5c5e9fc54612808977ee8f548b2258d31b6e0e4e5c5d6c4d7e3b0b3a1",
                "load_time": "2024-03-01T00:00:00Z",
                "source_tag": "werkportal",
                "is_current": True,
                "end_time": None,
                "payload": {"name": "Acme", "city": "Utrecht"},
                "schema_version": 1,
                "load_seq": 1,
            }
        }


class VersionUpdate(BaseModel):
    """Target current-flag state of one stored version (write set entry)."""

    load_seq: int
    entity_key: str
    is_current: bool
    end_time: datetime | None = None

    @field_validator("end_time")
    @classmethod
    def check_end_time(cls, v):
        return check_utc(v)

    class Config:
        frozen = True
