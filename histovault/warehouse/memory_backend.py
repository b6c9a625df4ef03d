"""
In-process vault backend.

Keeps every table in dictionaries and lists. Used by tests and by callers
that historize a snapshot without a database; it honours the same
uniqueness and write-set semantics as the PostgreSQL backend.
"""

import itertools
from collections import defaultdict
from datetime import date
from typing import Iterable

from histovault.core.models import (
    AttributeVersion,
    EntityRecord,
    IntervalUpdate,
    PitRow,
    RejectedRow,
    RelationshipRecord,
    ValidityInterval,
    VersionUpdate,
)

from .backend import SATELLITE_UNIQUE_COLUMNS, VaultBackend


class MemoryVaultBackend(VaultBackend):
    """Dictionary-backed VaultBackend."""

    def __init__(self):
        self._hubs: dict[str, dict[str, EntityRecord]] = defaultdict(dict)
        self._satellites: dict[str, dict[int, AttributeVersion]] = defaultdict(dict)
        self._links: dict[str, dict[str, RelationshipRecord]] = defaultdict(dict)
        self._intervals: dict[str, dict[int, ValidityInterval]] = defaultdict(dict)
        self._pits: dict[str, list[PitRow]] = {}
        self._rejections: list[RejectedRow] = []
        self._seq = itertools.count(1)

    def insert_entities(self, entity, records):
        hub = self._hubs[entity]
        inserted = []
        for record in records:
            if record.entity_key not in hub:
                hub[record.entity_key] = record
                inserted.append(record)
        return inserted

    def fetch_entities(self, entity, keys=None):
        hub = self._hubs[entity]
        if keys is None:
            return sorted(hub.values(), key=lambda r: r.entity_key)
        return [hub[key] for key in sorted(set(keys)) if key in hub]

    def insert_versions(self, satellite, versions, unique_columns=SATELLITE_UNIQUE_COLUMNS["all_history"]):
        table = self._satellites[satellite]
        existing = {tuple(getattr(v, c) for c in unique_columns) for v in table.values()}
        inserted = []
        for version in versions:
            unique = tuple(getattr(version, c) for c in unique_columns)
            if unique in existing:
                continue
            existing.add(unique)
            stored = version.model_copy(update={"load_seq": next(self._seq)})
            table[stored.load_seq] = stored
            inserted.append(stored)
        return inserted

    def fetch_versions(self, satellite, entity_keys=None):
        rows = self._satellites[satellite].values()
        if entity_keys is not None:
            wanted = set(entity_keys)
            rows = [v for v in rows if v.entity_key in wanted]
        return sorted(rows, key=lambda v: (v.entity_key, v.load_time, v.load_seq))

    def apply_version_updates(self, satellite, updates: Iterable[VersionUpdate]) -> int:
        table = self._satellites[satellite]
        changed = 0
        for update in updates:
            stored = table.get(update.load_seq)
            if stored is None:
                continue
            if stored.is_current == update.is_current and stored.end_time == update.end_time:
                continue
            table[update.load_seq] = stored.model_copy(
                update={"is_current": update.is_current, "end_time": update.end_time}
            )
            changed += 1
        return changed

    def insert_relationships(self, relationship, records):
        link = self._links[relationship]
        inserted = []
        for record in records:
            if record.relationship_key not in link:
                link[record.relationship_key] = record
                inserted.append(record)
        return inserted

    def fetch_relationships(self, relationship, keys=None):
        link = self._links[relationship]
        if keys is None:
            return sorted(link.values(), key=lambda r: r.relationship_key)
        return [link[key] for key in sorted(set(keys)) if key in link]

    def insert_intervals(self, relationship, intervals):
        table = self._intervals[relationship]
        existing = {(i.driving_key, i.start_time, i.relationship_key) for i in table.values()}
        inserted = []
        for interval in intervals:
            unique = (interval.driving_key, interval.start_time, interval.relationship_key)
            if unique in existing:
                continue
            existing.add(unique)
            stored = interval.model_copy(update={"load_seq": next(self._seq)})
            table[stored.load_seq] = stored
            inserted.append(stored)
        return inserted

    def fetch_intervals(self, relationship, driving_keys=None):
        rows = self._intervals[relationship].values()
        if driving_keys is not None:
            wanted = set(driving_keys)
            rows = [i for i in rows if i.driving_key in wanted]
        return sorted(rows, key=lambda i: (i.driving_key, i.start_time, i.load_seq))

    def apply_interval_updates(self, relationship, updates: Iterable[IntervalUpdate]) -> int:
        table = self._intervals[relationship]
        changed = 0
        for update in updates:
            stored = table.get(update.load_seq)
            if stored is None:
                continue
            if stored.is_active == update.is_active and stored.end_time == update.end_time:
                continue
            table[update.load_seq] = stored.model_copy(
                update={"is_active": update.is_active, "end_time": update.end_time}
            )
            changed += 1
        return changed

    def replace_pit(self, satellite, rows):
        self._pits[satellite] = sorted(rows, key=lambda r: (r.entity_key, r.snapshot_date))
        return len(self._pits[satellite])

    def fetch_pit(self, satellite, snapshot_date: date | None = None):
        rows = self._pits.get(satellite, [])
        if snapshot_date is not None:
            rows = [r for r in rows if r.snapshot_date == snapshot_date]
        return list(rows)

    def insert_rejections(self, rows):
        count = 0
        for row in rows:
            self._rejections.append(row.model_copy(update={"rejection_id": len(self._rejections) + 1}))
            count += 1
        return count

    def fetch_rejections(self, cycle_id=None, limit=100):
        rows = self._rejections
        if cycle_id is not None:
            rows = [r for r in rows if r.cycle_id == cycle_id]
        return list(reversed(rows))[:limit]
