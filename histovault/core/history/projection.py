"""
Point-in-time projection.

For every entity key and snapshot date, the applicable version is the one
with the latest load time whose UTC calendar date does not exceed the
snapshot date. The result depends only on its inputs and is serialized in
a canonical order, so two rebuilds over the same history are
byte-identical.
"""

import bisect
import hashlib
from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable

from histovault.core.hashing.canonical import canonical_fields, join_canonical
from histovault.core.models import AttributeVersion, PitRow
from histovault.core.sentinels import GHOST_LOAD_TIME, SENTINEL_KEYS, UNKNOWN_KEY
from histovault.utils.timestamps import utc_date


def default_snapshot_dates(versions: Iterable[AttributeVersion]) -> list[date]:
    """Distinct load dates of all non-sentinel versions, ascending."""
    return sorted({utc_date(v.load_time) for v in versions if v.entity_key not in SENTINEL_KEYS})


def daily_snapshot_grid(start: date, end: date) -> list[date]:
    """Every calendar date from start to end, inclusive."""
    if end < start:
        raise ValueError(f"grid end {end} is before start {start}")
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def compute_pit_rows(
    entity_keys: Iterable[str],
    versions: Iterable[AttributeVersion],
    snapshot_dates: Iterable[date],
    unresolved: str = "null",
) -> list[PitRow]:
    """
    Compute PIT rows for an entity key x snapshot date grid.

    Args:
        entity_keys: Keys of the entity store
        versions: Versions of the satellite
        snapshot_dates: Snapshot grid
        unresolved: Cells with no applicable version are kept with nulls
            ("null"), dropped ("omit"), or pointed at the unknown sentinel
            ("sentinel")

    Returns:
        Rows sorted by entity key, then snapshot date
    """
    if unresolved not in ("null", "omit", "sentinel"):
        raise ValueError(f"unknown unresolved policy: {unresolved}")

    by_key: dict[str, list[AttributeVersion]] = defaultdict(list)
    for version in versions:
        by_key[version.entity_key].append(version)

    timelines = {}
    for entity_key, key_versions in by_key.items():
        ordered = sorted(key_versions, key=lambda v: (v.load_time, v.load_seq or 0))
        timelines[entity_key] = ([utc_date(v.load_time) for v in ordered], ordered)

    grid = sorted(set(snapshot_dates))
    rows = []
    for entity_key in sorted(set(entity_keys)):
        dates, ordered = timelines.get(entity_key, ([], []))
        for snapshot_date in grid:
            position = bisect.bisect_right(dates, snapshot_date)
            if position > 0:
                version = ordered[position - 1]
                rows.append(
                    PitRow(
                        entity_key=entity_key,
                        snapshot_date=snapshot_date,
                        applicable_version_key=version.entity_key,
                        applicable_load_time=version.load_time,
                        applicable_diff_hash=version.diff_hash,
                    )
                )
            elif unresolved == "null":
                rows.append(PitRow(entity_key=entity_key, snapshot_date=snapshot_date))
            elif unresolved == "sentinel":
                rows.append(
                    PitRow(
                        entity_key=entity_key,
                        snapshot_date=snapshot_date,
                        applicable_version_key=UNKNOWN_KEY,
                        applicable_load_time=GHOST_LOAD_TIME,
                        applicable_diff_hash=UNKNOWN_KEY,
                    )
                )
    return rows


def serialize_pit(rows: Iterable[PitRow]) -> bytes:
    """Canonical serialization: one escaped, joined line per row, in row order."""
    lines = []
    for row in rows:
        fields = canonical_fields(
            [
                row.entity_key,
                row.snapshot_date,
                row.applicable_version_key,
                row.applicable_load_time,
                row.applicable_diff_hash,
            ]
        )
        lines.append(join_canonical(fields))
    return "\n".join(lines).encode("utf-8")


def pit_checksum(rows: Iterable[PitRow]) -> str:
    return hashlib.sha256(serialize_pit(rows)).hexdigest()
