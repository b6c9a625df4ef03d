"""
Validity interval algebra for relationship validity trackers.

The intervals of a driving key are a sequence of change points: each
interval starts when the driving key was observed attached to a different
relationship than the one in force at that moment, and ends where the next
one starts. Absence of an observation never closes an interval.
"""

from collections import defaultdict
from datetime import datetime
from typing import Iterable

from pydantic import BaseModel, Field, field_validator

from histovault.core.errors import SimultaneousLoadTimeConflict
from histovault.core.models import IntervalUpdate, ValidityInterval
from histovault.core.models.keys import check_hash_key, check_utc

from .timeline import REJECT


class Observation(BaseModel):
    """A driving key seen attached to a relationship at a point in time."""

    relationship_key: str
    driving_key: str
    observed_at: datetime
    source_tag: str

    @field_validator("relationship_key", "driving_key")
    @classmethod
    def check_keys(cls, v):
        return check_hash_key(v)

    @field_validator("observed_at")
    @classmethod
    def check_observed_at(cls, v):
        return check_utc(v)


class ObservationPlan(BaseModel):
    """
    Classification of a batch of observations.

    Attributes:
        opens: Intervals to insert (provisionally active, end unset)
        open_indices: Observation positions of `opens`
        noop_indices: Observations already covered by the same relationship
        conflicts: Observation position -> reason, for same-time conflicts
    """

    opens: list[ValidityInterval] = Field(default_factory=list)
    open_indices: list[int] = Field(default_factory=list)
    noop_indices: list[int] = Field(default_factory=list)
    conflicts: dict[int, str] = Field(default_factory=dict)


def _stored_order(interval: ValidityInterval) -> tuple:
    return (interval.start_time, interval.load_seq if interval.load_seq is not None else -1)


def covering_interval(intervals: Iterable[ValidityInterval], at: datetime) -> ValidityInterval | None:
    """
    The interval of one driving key in force at `at`.

    Computed from start times alone, so it is correct before and after the
    reconcile pass.
    """
    covering = None
    for interval in sorted(intervals, key=_stored_order):
        if interval.start_time > at:
            break
        covering = interval
    return covering


def plan_observations(
    stored: Iterable[ValidityInterval],
    observations: list[Observation],
    policy: str = REJECT,
) -> ObservationPlan:
    """
    Decide which observations open a new interval.

    Stored intervals and observations of each driving key are merged in
    time order. An observation is a no-op if the relationship in force at
    its time (latest change point not after it) is the same relationship;
    otherwise it opens an interval. Late observations open intervals in the
    past; adjacent intervals of the same relationship that result are not
    merged.

    Under "reject", observations sharing a time with a different
    relationship (within the batch or with a stored interval start) are
    refused. Under "insertion_order" they are ordered after stored
    intervals and then by batch position.
    """
    stored_by_key: dict[str, list[ValidityInterval]] = defaultdict(list)
    for interval in stored:
        stored_by_key[interval.driving_key].append(interval)

    by_key: dict[str, list[tuple[int, Observation]]] = defaultdict(list)
    for index, observation in enumerate(observations):
        by_key[observation.driving_key].append((index, observation))

    plan = ObservationPlan()
    opened: list[tuple[int, ValidityInterval]] = []

    for driving_key in sorted(by_key):
        key_stored = stored_by_key.get(driving_key, [])
        key_observations = by_key[driving_key]

        if policy == REJECT:
            conflicts = _time_conflicts(key_stored, key_observations)
            plan.conflicts.update(conflicts)
            key_observations = [(i, o) for i, o in key_observations if i not in conflicts]

        events = [((s.start_time, 0, s.load_seq or 0), None, s.relationship_key, None) for s in key_stored]
        events += [((o.observed_at, 1, i), i, o.relationship_key, o) for i, o in key_observations]
        events.sort(key=lambda event: event[0])

        in_force = None
        for _, index, relationship_key, observation in events:
            if index is None:
                in_force = relationship_key
                continue
            if in_force == relationship_key:
                plan.noop_indices.append(index)
                continue
            opened.append(
                (
                    index,
                    ValidityInterval(
                        relationship_key=relationship_key,
                        driving_key=driving_key,
                        start_time=observation.observed_at,
                        end_time=None,
                        is_active=True,
                        source_tag=observation.source_tag,
                    ),
                )
            )
            in_force = relationship_key

    for index, interval in sorted(opened, key=lambda item: item[0]):
        plan.open_indices.append(index)
        plan.opens.append(interval)
    plan.noop_indices.sort()
    return plan


def _time_conflicts(stored, observations) -> dict[int, str]:
    stored_at = defaultdict(set)
    for interval in stored:
        stored_at[interval.start_time].add(interval.relationship_key)

    batch_at = defaultdict(set)
    for _, observation in observations:
        batch_at[observation.observed_at].add(observation.relationship_key)

    conflicts = {}
    for index, observation in observations:
        keys = batch_at[observation.observed_at] | stored_at.get(observation.observed_at, set())
        if len(keys) > 1:
            conflicts[index] = str(
                SimultaneousLoadTimeConflict(observation.driving_key, observation.observed_at, sorted(keys))
            )
    return conflicts


def compute_interval_updates(
    intervals: Iterable[ValidityInterval],
    policy: str = REJECT,
) -> list[IntervalUpdate]:
    """
    Recompute end times and the active flag of every driving key.

    Sorting the intervals of a driving key by start time must yield
    end_time[i] == start_time[i + 1] and only the last one active. Only
    rows whose stored state differs are returned.

    Raises:
        SimultaneousLoadTimeConflict: Under "reject", on intervals sharing a start time
    """
    by_key: dict[str, list[ValidityInterval]] = defaultdict(list)
    for interval in intervals:
        by_key[interval.driving_key].append(interval)

    updates = []
    for driving_key in sorted(by_key):
        ordered = sorted(by_key[driving_key], key=_stored_order)
        if policy == REJECT:
            for previous, interval in zip(ordered, ordered[1:]):
                if previous.start_time == interval.start_time:
                    raise SimultaneousLoadTimeConflict(
                        driving_key,
                        interval.start_time,
                        [previous.relationship_key, interval.relationship_key],
                    )
        for position, interval in enumerate(ordered):
            is_last = position == len(ordered) - 1
            end_time = None if is_last else ordered[position + 1].start_time
            if interval.is_active != is_last or interval.end_time != end_time:
                updates.append(
                    IntervalUpdate(
                        load_seq=interval.load_seq,
                        driving_key=driving_key,
                        is_active=is_last,
                        end_time=end_time,
                    )
                )
    return updates
