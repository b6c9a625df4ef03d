"""
Version timeline algebra for attribute history stores.

Two pure computations over the versions of an entity:

- plan_appends decides which candidate versions of a batch are new, which
  are unchanged, which collapse into an earlier duplicate and which collide
  on load time with a different payload;
- compute_version_updates recomputes is_current/end_time of every stored
  version from (entity_key, load_time, load_seq) alone and returns the rows
  whose stored flags differ, as one write set.

Neither depends on physical insertion order except where the
"insertion_order" policy makes load_seq the tiebreaker on purpose.
"""

from collections import defaultdict
from typing import Iterable

from pydantic import BaseModel, Field

from histovault.core.errors import SimultaneousLoadTimeConflict
from histovault.core.models import AttributeVersion, DuplicateVersionCollision, VersionUpdate

REJECT = "reject"
INSERTION_ORDER = "insertion_order"
ALL_HISTORY = "all_history"
LATEST_VERSION = "latest_version"


class AppendPlan(BaseModel):
    """
    Classification of a batch of candidate versions.

    Candidates are referred to by their position in the input list.

    Attributes:
        inserts: Versions to insert, provisionally current
        insert_indices: Candidate positions of `inserts`
        unchanged_indices: Candidates whose payload is already recorded
        collisions: Same-payload candidates collapsed into an earlier one
        conflicts: Candidate position -> reason, for same-load-time conflicts
    """

    inserts: list[AttributeVersion] = Field(default_factory=list)
    insert_indices: list[int] = Field(default_factory=list)
    unchanged_indices: list[int] = Field(default_factory=list)
    collisions: list[DuplicateVersionCollision] = Field(default_factory=list)
    conflicts: dict[int, str] = Field(default_factory=dict)


def _stored_order(version: AttributeVersion) -> tuple:
    return (version.load_time, version.load_seq if version.load_seq is not None else -1)


def sort_versions(versions: Iterable[AttributeVersion], policy: str = REJECT) -> list[AttributeVersion]:
    """
    Sort the versions of one entity chronologically.

    Raises:
        SimultaneousLoadTimeConflict: Under "reject", if two versions share a load time
    """
    ordered = sorted(versions, key=_stored_order)
    if policy == REJECT:
        for previous, version in zip(ordered, ordered[1:]):
            if previous.load_time == version.load_time:
                raise SimultaneousLoadTimeConflict(
                    version.entity_key, version.load_time, [previous.diff_hash, version.diff_hash]
                )
    return ordered


def compute_version_updates(
    versions: Iterable[AttributeVersion],
    policy: str = REJECT,
) -> list[VersionUpdate]:
    """
    Recompute current flags and end times.

    For every entity key, sorting its versions by load time must yield
    end_time[i] == load_time[i + 1], end_time[last] is None, and exactly the
    last version current. Only rows whose stored state differs are returned.

    Args:
        versions: Stored versions (with load_seq) of the keys to reconcile
        policy: "reject" or "insertion_order"

    Returns:
        Write set of version updates, ordered by entity key and load time

    Raises:
        SimultaneousLoadTimeConflict: Under "reject", on same-load-time versions
    """
    by_key: dict[str, list[AttributeVersion]] = defaultdict(list)
    for version in versions:
        by_key[version.entity_key].append(version)

    updates = []
    for entity_key in sorted(by_key):
        ordered = sort_versions(by_key[entity_key], policy)
        for position, version in enumerate(ordered):
            is_last = position == len(ordered) - 1
            end_time = None if is_last else ordered[position + 1].load_time
            if version.is_current != is_last or version.end_time != end_time:
                updates.append(
                    VersionUpdate(
                        load_seq=version.load_seq,
                        entity_key=entity_key,
                        is_current=is_last,
                        end_time=end_time,
                    )
                )
    return updates


def _load_time_conflicts(
    stored: list[AttributeVersion],
    candidates: list[tuple[int, AttributeVersion]],
) -> dict[int, str]:
    """Candidates sharing a load time with a different payload (batch or stored)."""
    stored_hashes = defaultdict(set)
    for version in stored:
        stored_hashes[version.load_time].add(version.diff_hash)

    batch_hashes = defaultdict(set)
    for _, candidate in candidates:
        batch_hashes[candidate.load_time].add(candidate.diff_hash)

    conflicts = {}
    for index, candidate in candidates:
        hashes = batch_hashes[candidate.load_time] | stored_hashes.get(candidate.load_time, set())
        if len(hashes) > 1:
            conflicts[index] = str(
                SimultaneousLoadTimeConflict(candidate.entity_key, candidate.load_time, sorted(hashes))
            )
    return conflicts


def plan_appends(
    stored: Iterable[AttributeVersion],
    candidates: list[AttributeVersion],
    dedup_mode: str = ALL_HISTORY,
    policy: str = REJECT,
    satellite: str = "",
) -> AppendPlan:
    """
    Decide which candidate versions to append.

    "all_history": a candidate is new if its diff hash was never recorded for
    the key. Candidates of one key with the same hash collapse to the
    earliest load time; the rest are reported as collisions.

    "latest_version": candidates and stored versions are merged in time
    order; a candidate is new if its hash differs from its chronological
    predecessor, so a payload returning to an earlier state is recorded.
    A candidate equal to a predecessor from the same batch is a collision.

    Under "reject", candidates sharing a load time with a different payload
    (within the batch or with a stored version of the key) are all refused.
    Under "insertion_order" such candidates are ordered after stored
    versions and then by batch position.

    Args:
        stored: Stored versions of the candidates' keys
        candidates: Candidate versions (load_seq unset)
        dedup_mode: "all_history" or "latest_version"
        policy: "reject" or "insertion_order"
        satellite: Satellite name, for collision reports

    Returns:
        AppendPlan
    """
    stored_by_key: dict[str, list[AttributeVersion]] = defaultdict(list)
    for version in stored:
        stored_by_key[version.entity_key].append(version)

    candidates_by_key: dict[str, list[tuple[int, AttributeVersion]]] = defaultdict(list)
    for index, candidate in enumerate(candidates):
        candidates_by_key[candidate.entity_key].append((index, candidate))

    plan = AppendPlan()
    accepted: list[tuple[int, AttributeVersion]] = []

    for entity_key in sorted(candidates_by_key):
        key_stored = stored_by_key.get(entity_key, [])
        key_candidates = candidates_by_key[entity_key]

        if policy == REJECT:
            conflicts = _load_time_conflicts(key_stored, key_candidates)
            plan.conflicts.update(conflicts)
            key_candidates = [(i, c) for i, c in key_candidates if i not in conflicts]

        if dedup_mode == LATEST_VERSION:
            accepted.extend(_plan_latest_version(key_stored, key_candidates, plan, satellite))
        else:
            accepted.extend(_plan_all_history(key_stored, key_candidates, plan, satellite))

    for index, candidate in sorted(accepted, key=lambda item: item[0]):
        plan.insert_indices.append(index)
        plan.inserts.append(candidate)
    plan.unchanged_indices.sort()
    return plan


def _plan_all_history(stored, candidates, plan, satellite):
    known = {version.diff_hash for version in stored}
    earliest: dict[str, tuple[int, AttributeVersion]] = {}

    for index, candidate in sorted(candidates, key=lambda item: (item[1].load_time, item[0])):
        if candidate.diff_hash in known:
            plan.unchanged_indices.append(index)
            continue
        kept = earliest.get(candidate.diff_hash)
        if kept is None:
            earliest[candidate.diff_hash] = (index, candidate)
            continue
        plan.unchanged_indices.append(index)
        if kept[1].load_time != candidate.load_time:
            plan.collisions.append(
                DuplicateVersionCollision(
                    satellite=satellite,
                    entity_key=candidate.entity_key,
                    diff_hash=candidate.diff_hash,
                    kept_load_time=kept[1].load_time,
                    discarded_load_time=candidate.load_time,
                )
            )
    return list(earliest.values())


def _plan_latest_version(stored, candidates, plan, satellite):
    # Stored rows sort before batch rows at the same load time
    events = [((v.load_time, 0, v.load_seq or 0), None, v) for v in stored]
    events += [((c.load_time, 1, i), i, c) for i, c in candidates]
    events.sort(key=lambda event: event[0])

    accepted = []
    previous: AttributeVersion | None = None
    previous_from_batch = False
    for _, index, version in events:
        if index is None:
            previous, previous_from_batch = version, False
            continue
        if previous is not None and previous.diff_hash == version.diff_hash:
            plan.unchanged_indices.append(index)
            if previous_from_batch and previous.load_time != version.load_time:
                plan.collisions.append(
                    DuplicateVersionCollision(
                        satellite=satellite,
                        entity_key=version.entity_key,
                        diff_hash=version.diff_hash,
                        kept_load_time=previous.load_time,
                        discarded_load_time=version.load_time,
                    )
                )
            continue
        accepted.append((index, version))
        previous, previous_from_batch = version, True
    return accepted
