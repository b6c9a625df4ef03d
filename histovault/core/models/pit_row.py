"""
PIT projection models.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from .keys import check_hash_key, check_utc


class PitRow(BaseModel):
    """
    The version of an entity applicable at one snapshot date.

    Attributes:
        entity_key: Entity the row describes
        snapshot_date: Snapshot date of the grid
        applicable_version_key: Hash key of the applicable satellite row
            (with applicable_load_time it identifies the row); None if unresolved
        applicable_load_time: Load time of the applicable version
        applicable_diff_hash: Diff hash of the applicable version
    """

    entity_key: str
    snapshot_date: date
    applicable_version_key: str | None = None
    applicable_load_time: datetime | None = None
    applicable_diff_hash: str | None = None

    @field_validator("entity_key", "applicable_version_key", "applicable_diff_hash")
    @classmethod
    def check_keys(cls, v):
        return check_hash_key(v)

    @field_validator("applicable_load_time")
    @classmethod
    def check_load_time(cls, v):
        return check_utc(v)

    @property
    def resolved(self) -> bool:
        return self.applicable_version_key is not None

    class Config:
        frozen = True


class PitBuildResult(BaseModel):
    """
    Outcome of one PIT rebuild.

    Attributes:
        satellite: Satellite the projection was built for
        rows_written: Rows in the rebuilt projection
        unresolved: Grid cells with no applicable version
        snapshot_dates: Grid used for the rebuild
        checksum: SHA-256 of the canonical serialization of the rows
    """

    satellite: str
    rows_written: int = Field(0, ge=0)
    unresolved: int = Field(0, ge=0)
    snapshot_dates: list[date] = Field(default_factory=list)
    checksum: str
