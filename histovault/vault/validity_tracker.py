"""
Relationship validity tracker (effectivity satellite).

Tracks, per driving key, which relationship was in force over time.
Intervals open when a driving key is observed attached to a different
relationship than the one in force; they close only when superseded.
Not seeing a driving key in a batch never closes its interval.
"""

from datetime import datetime
from typing import Iterable

from pydantic import BaseModel, Field

from histovault.core.errors import SimultaneousLoadTimeConflict
from histovault.core.history import Observation, compute_interval_updates, covering_interval, plan_observations
from histovault.core.models import ValidityInterval
from histovault.core.schema import VaultSettings
from histovault.observability.logger import get_logger
from histovault.observability.metrics import increment_counter, intervals_opened_total, maintenance_updates_total
from histovault.utils.timestamps import ensure_utc
from histovault.warehouse.backend import VaultBackend

logger = get_logger(__name__)


class ObservationOutcome(BaseModel):
    """
    Result of recording a batch of observations.

    Attributes:
        opened: Intervals written (with load_seq)
        noop: Observations already covered by the same relationship
        conflicts: Observation position -> reason, for refused observations
    """

    opened: list[ValidityInterval] = Field(default_factory=list)
    noop: int = 0
    conflicts: dict[int, str] = Field(default_factory=dict)


class ValidityTracker:
    """
    Validity intervals of one relationship type.

    Args:
        backend: Storage backend
        relationship: Relationship name
        settings: Engine settings (load time conflict policy)
    """

    def __init__(self, backend: VaultBackend, relationship: str, settings: VaultSettings | None = None):
        self.backend = backend
        self.relationship = relationship
        self.settings = settings or VaultSettings()
        self.policy = self.settings.load_time_conflict_policy

    def record_observation(
        self,
        relationship_key: str,
        driving_key: str,
        observed_at: datetime,
        source_tag: str,
    ) -> ValidityInterval | None:
        """
        Record that `driving_key` was attached to `relationship_key` at `observed_at`.

        A no-op if the interval in force at `observed_at` already points at
        the relationship; otherwise an interval is opened and the driving
        key's intervals are re-tiled (the superseded one is closed).

        Returns:
            The opened interval, or None for a no-op

        Raises:
            SimultaneousLoadTimeConflict: If another relationship starts at the
                same time for this driving key (policy "reject")
        """
        observation = Observation(
            relationship_key=relationship_key,
            driving_key=driving_key,
            observed_at=ensure_utc(observed_at),
            source_tag=source_tag,
        )
        outcome = self.record_batch([observation])
        if outcome.conflicts:
            stored = self.backend.fetch_intervals(self.relationship, [driving_key])
            keys = {i.relationship_key for i in stored if i.start_time == observation.observed_at}
            raise SimultaneousLoadTimeConflict(driving_key, observation.observed_at, sorted(keys | {relationship_key}))
        self.reconcile([driving_key])
        return outcome.opened[0] if outcome.opened else None

    def find_conflicts(self, observations: list[Observation]) -> dict[int, str]:
        """
        Observations record_batch would refuse, by position, without writing.

        Lets callers keep refused observations out of the relationship store.
        """
        if not observations or self.policy != "reject":
            return {}
        stored = self.backend.fetch_intervals(self.relationship, {o.driving_key for o in observations})
        return plan_observations(stored, observations, self.policy).conflicts

    def record_batch(self, observations: list[Observation]) -> ObservationOutcome:
        """
        Append phase: open the intervals a batch of observations calls for.

        End times and active flags are left to reconcile().
        """
        if not observations:
            return ObservationOutcome()

        driving_keys = {o.driving_key for o in observations}
        stored = self.backend.fetch_intervals(self.relationship, driving_keys)
        plan = plan_observations(stored, observations, self.policy)

        opened = self.backend.insert_intervals(self.relationship, plan.opens)
        increment_counter(intervals_opened_total, len(opened), relationship=self.relationship)
        logger.debug(
            f"Validity {self.relationship}: {len(opened)} opened, {len(plan.noop_indices)} no-op, "
            f"{len(plan.conflicts)} conflicts"
        )
        return ObservationOutcome(
            opened=opened,
            noop=len(plan.noop_indices) + (len(plan.opens) - len(opened)),
            conflicts=plan.conflicts,
        )

    def reconcile(self, driving_keys: Iterable[str] | None = None) -> int:
        """
        Maintenance phase: recompute end times and active flags.

        Returns:
            Number of rows rewritten
        """
        if driving_keys is not None:
            driving_keys = set(driving_keys)
            if not driving_keys:
                return 0

        intervals = self.backend.fetch_intervals(self.relationship, driving_keys)
        updates = compute_interval_updates(intervals, self.policy)
        changed = self.backend.apply_interval_updates(self.relationship, updates)
        increment_counter(maintenance_updates_total, changed, store=self.relationship, kind="validity")
        return changed

    def active(self) -> list[ValidityInterval]:
        """The active interval of every driving key."""
        return [i for i in self.backend.fetch_intervals(self.relationship) if i.is_active]

    def history(self, driving_key: str) -> list[ValidityInterval]:
        return self.backend.fetch_intervals(self.relationship, [driving_key])

    def as_of(self, driving_key: str, at: datetime) -> ValidityInterval | None:
        """The interval of a driving key in force at `at`."""
        return covering_interval(self.history(driving_key), ensure_utc(at))
