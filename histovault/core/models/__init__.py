"""
Core data models for the historization engine.

All models use Pydantic for runtime validation; timestamps are normalized
to aware UTC on construction.
"""

from .attribute_version import AttributeVersion, VersionUpdate
from .collision import DuplicateVersionCollision
from .cycle_result import CycleResult
from .entity_record import EntityRecord
from .pit_row import PitBuildResult, PitRow
from .rejected_row import RejectedRow
from .relationship_record import RelationshipRecord
from .source_batch import SourceBatch, SourceRow
from .validity_interval import IntervalUpdate, ValidityInterval

__all__ = [
    "EntityRecord",
    "AttributeVersion",
    "VersionUpdate",
    "RelationshipRecord",
    "ValidityInterval",
    "IntervalUpdate",
    "PitRow",
    "PitBuildResult",
    "RejectedRow",
    "DuplicateVersionCollision",
    "SourceRow",
    "SourceBatch",
    "CycleResult",
]
