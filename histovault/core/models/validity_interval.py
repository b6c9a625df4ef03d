"""
ValidityInterval model: one row of a relationship validity tracker.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .keys import check_hash_key, check_utc


class ValidityInterval(BaseModel):
    """
    Period during which a driving key was attached to one relationship.

    Attributes:
        relationship_key: Relationship in force during the interval
        driving_key: Entity whose observations drive the intervals
        start_time: Observation time that opened the interval
        end_time: Start of the superseding interval, if any
        is_active: Whether this is the driving key's latest interval
        source_tag: Source of the opening observation
        load_seq: Store-assigned insertion sequence (row identity)
    """

    relationship_key: str
    driving_key: str
    start_time: datetime
    end_time: datetime | None = None
    is_active: bool = True
    source_tag: str = Field(..., min_length=1)
    load_seq: int | None = None

    @field_validator("relationship_key", "driving_key")
    @classmethod
    def check_keys(cls, v):
        return check_hash_key(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def check_times(cls, v):
        return check_utc(v)

    def covers(self, at: datetime) -> bool:
        """True if `at` falls in [start_time, end_time)."""
        return self.start_time <= at and (self.end_time is None or at < self.end_time)


class IntervalUpdate(BaseModel):
    """Target state of one stored interval (write set entry)."""

    load_seq: int
    driving_key: str
    is_active: bool
    end_time: datetime | None = None

    @field_validator("end_time")
    @classmethod
    def check_end_time(cls, v):
        return check_utc(v)

    class Config:
        frozen = True
