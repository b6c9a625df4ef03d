"""
Storage substrate interface for the vault stores.

A backend persists the rows of every hub, satellite, link, validity and
PIT table plus the rejection log. Stores call it with table-level names
(entity, satellite or relationship names); the backend maps them to its
own layout. Inserts are idempotent: rows whose unique key already exists
are skipped, and only the rows actually written are returned.
"""

from abc import ABC, abstractmethod
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

# Unique columns of a satellite per dedup mode
SATELLITE_UNIQUE_COLUMNS = {
    "all_history": ("entity_key", "diff_hash"),
    "latest_version": ("entity_key", "diff_hash", "load_time"),
}


class VaultBackend(ABC):
    """Abstract persistence layer for the vault."""

    # Entity stores (hubs)

    @abstractmethod
    def insert_entities(self, entity: str, records: Iterable[EntityRecord]) -> list[EntityRecord]:
        """Insert records whose entity_key is absent; return the inserted ones."""

    @abstractmethod
    def fetch_entities(self, entity: str, keys: Iterable[str] | None = None) -> list[EntityRecord]:
        """Fetch hub rows, all or by key."""

    # Attribute history stores (satellites)

    @abstractmethod
    def insert_versions(
        self,
        satellite: str,
        versions: Iterable[AttributeVersion],
        unique_columns: tuple[str, ...] = SATELLITE_UNIQUE_COLUMNS["all_history"],
    ) -> list[AttributeVersion]:
        """Insert versions absent on `unique_columns`; return them with load_seq assigned."""

    @abstractmethod
    def fetch_versions(self, satellite: str, entity_keys: Iterable[str] | None = None) -> list[AttributeVersion]:
        """Fetch satellite rows, all or for the given entity keys."""

    @abstractmethod
    def apply_version_updates(self, satellite: str, updates: Iterable[VersionUpdate]) -> int:
        """Apply a write set of current-flag updates; return the rows changed."""

    # Relationship stores (links)

    @abstractmethod
    def insert_relationships(
        self, relationship: str, records: Iterable[RelationshipRecord]
    ) -> list[RelationshipRecord]:
        """Insert records whose relationship_key is absent; return the inserted ones."""

    @abstractmethod
    def fetch_relationships(
        self, relationship: str, keys: Iterable[str] | None = None
    ) -> list[RelationshipRecord]:
        """Fetch link rows, all or by key."""

    # Relationship validity (effectivity satellites)

    @abstractmethod
    def insert_intervals(self, relationship: str, intervals: Iterable[ValidityInterval]) -> list[ValidityInterval]:
        """Insert intervals absent on (driving_key, start_time, relationship_key); return them with load_seq."""

    @abstractmethod
    def fetch_intervals(
        self, relationship: str, driving_keys: Iterable[str] | None = None
    ) -> list[ValidityInterval]:
        """Fetch validity rows, all or for the given driving keys."""

    @abstractmethod
    def apply_interval_updates(self, relationship: str, updates: Iterable[IntervalUpdate]) -> int:
        """Apply a write set of interval updates; return the rows changed."""

    # PIT projections

    @abstractmethod
    def replace_pit(self, satellite: str, rows: Iterable[PitRow]) -> int:
        """Replace the whole PIT table of a satellite atomically."""

    @abstractmethod
    def fetch_pit(self, satellite: str, snapshot_date: date | None = None) -> list[PitRow]:
        """Fetch PIT rows ordered by entity key and snapshot date."""

    # Rejections

    @abstractmethod
    def insert_rejections(self, rows: Iterable[RejectedRow]) -> int:
        """Persist rejected rows."""

    @abstractmethod
    def fetch_rejections(self, cycle_id: str | None = None, limit: int = 100) -> list[RejectedRow]:
        """Fetch the most recent rejections, optionally for one cycle."""

    def close(self) -> None:
        """Release resources held by the backend."""
