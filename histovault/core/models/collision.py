"""
DuplicateVersionCollision model.
"""

from datetime import datetime

from pydantic import BaseModel, field_validator

from .keys import check_utc


class DuplicateVersionCollision(BaseModel):
    """
    Two candidates for one entity with the same payload at different load times.

    Not an error: the earliest load time is kept, the later candidate is
    reported here and dropped.
    """

    satellite: str
    entity_key: str
    diff_hash: str
    kept_load_time: datetime
    discarded_load_time: datetime

    @field_validator("kept_load_time", "discarded_load_time")
    @classmethod
    def check_times(cls, v):
        return check_utc(v)

    class Config:
        frozen = True
