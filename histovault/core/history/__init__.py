"""
Pure history algebra: version timelines, validity intervals and PIT projection.
"""

from .projection import (
    compute_pit_rows,
    daily_snapshot_grid,
    default_snapshot_dates,
    pit_checksum,
    serialize_pit,
)
from .timeline import AppendPlan, compute_version_updates, plan_appends, sort_versions
from .validity import (
    Observation,
    ObservationPlan,
    compute_interval_updates,
    covering_interval,
    plan_observations,
)

__all__ = [
    "AppendPlan",
    "plan_appends",
    "sort_versions",
    "compute_version_updates",
    "Observation",
    "ObservationPlan",
    "plan_observations",
    "covering_interval",
    "compute_interval_updates",
    "compute_pit_rows",
    "default_snapshot_dates",
    "daily_snapshot_grid",
    "serialize_pit",
    "pit_checksum",
]
