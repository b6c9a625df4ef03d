"""
CycleResult model: counters and reports of one load cycle.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .collision import DuplicateVersionCollision
from .pit_row import PitBuildResult
from .rejected_row import RejectedRow


class CycleResult(BaseModel):
    """
    Outcome of one load cycle.

    Counters are keyed by store name (hub, satellite or relationship).
    """

    cycle_id: str
    started_at: datetime
    finished_at: datetime | None = None
    rows_received: int = 0
    sentinels_inserted: int = 0
    entities_inserted: dict[str, int] = Field(default_factory=dict)
    versions_appended: dict[str, int] = Field(default_factory=dict)
    versions_unchanged: dict[str, int] = Field(default_factory=dict)
    relationships_inserted: dict[str, int] = Field(default_factory=dict)
    intervals_opened: dict[str, int] = Field(default_factory=dict)
    maintenance_updates: int = 0
    collisions: list[DuplicateVersionCollision] = Field(default_factory=list)
    rejections: list[RejectedRow] = Field(default_factory=list)
    pit: list[PitBuildResult] = Field(default_factory=list)

    @property
    def rows_rejected(self) -> int:
        return len(self.rejections)

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> dict:
        """Flat summary for logging and the CLI."""
        return {
            "cycle_id": self.cycle_id,
            "rows_received": self.rows_received,
            "rows_rejected": self.rows_rejected,
            "sentinels_inserted": self.sentinels_inserted,
            "entities_inserted": sum(self.entities_inserted.values()),
            "versions_appended": sum(self.versions_appended.values()),
            "versions_unchanged": sum(self.versions_unchanged.values()),
            "relationships_inserted": sum(self.relationships_inserted.values()),
            "intervals_opened": sum(self.intervals_opened.values()),
            "maintenance_updates": self.maintenance_updates,
            "collisions": len(self.collisions),
            "pit_rows": sum(p.rows_written for p in self.pit),
            "duration_seconds": self.duration_seconds,
        }
