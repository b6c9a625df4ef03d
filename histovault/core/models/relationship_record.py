"""
RelationshipRecord model: one row of a relationship store (link).
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .keys import check_hash_key, check_utc


class RelationshipRecord(BaseModel):
    """
    A distinct association between entities.

    Attributes:
        relationship_key: Hash of the ordered participant keys and role
        participant_keys: Participant entity keys, in definition order
        role: Role code, if the relationship defines one
        load_time: Load time of the first batch that carried the association
        source_tag: Source that first delivered the association
    """

    relationship_key: str
    participant_keys: tuple[str, ...] = Field(..., min_length=2)
    role: str | None = None
    load_time: datetime
    source_tag: str = Field(..., min_length=1)

    @field_validator("relationship_key")
    @classmethod
    def check_key(cls, v):
        return check_hash_key(v)

    @field_validator("participant_keys")
    @classmethod
    def check_participants(cls, v):
        return tuple(check_hash_key(key) for key in v)

    @field_validator("load_time")
    @classmethod
    def check_load_time(cls, v):
        return check_utc(v)

    class Config:
        frozen = True
