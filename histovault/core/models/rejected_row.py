"""
RejectedRow model: a source row the engine refused, with the reason.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from histovault.utils.timestamps import utc_now

from .keys import check_utc

RejectionReason = Literal[
    "key_derivation",
    "null_business_key",
    "simultaneous_load_time",
    "orphan_relationship",
]


class RejectedRow(BaseModel):
    """
    A source row that could not be historized.

    Attributes:
        rejection_id: Auto-increment primary key (assigned by the store)
        cycle_id: Load cycle that rejected the row
        entity: Source batch the row came from
        target: Store that refused the row (hub, satellite or relationship name)
        reason: Rejection category
        message: Error detail
        source_tag: Source tag of the row
        load_time: Load time of the row
        values: Original row values
        rejected_at: When the row was rejected
    """

    rejection_id: int | None = None
    cycle_id: str | None = None
    entity: str
    target: str
    reason: RejectionReason
    message: str
    source_tag: str
    load_time: datetime
    values: dict[str, Any] = Field(default_factory=dict)
    rejected_at: datetime = Field(default_factory=utc_now)

    @field_validator("load_time", "rejected_at")
    @classmethod
    def check_times(cls, v):
        return check_utc(v)

    class Config:
        json_schema_extra = {
            "example": {
                "cycle_id": "cycle_20240301_000000",
                "entity": "company",
                "target": "company_client",
                "reason": "orphan_relationship",
                "message": "Relationship 'company_client' references unknown client key 1f0c...",
                "source_tag": "werkportal",
                "load_time": "2024-03-01T00:00:00Z",
                "values": {"object_id": 42, "client_id": 7},
            }
        }
