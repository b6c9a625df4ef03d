"""
Attribute history store (satellite): append-only versioned attributes.

Appends only record payloads whose diff hash is new for the entity; the
current flag and end time of every version are maintained afterwards by
reconcile_current_flags, as a pure recomputation over
(entity_key, load_time[, load_seq]).
"""

from datetime import datetime
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, Field

from histovault.core.errors import ConfigurationError, SimultaneousLoadTimeConflict
from histovault.core.hashing import ChangeFingerprinter
from histovault.core.history import compute_version_updates, plan_appends, sort_versions
from histovault.core.models import AttributeVersion, DuplicateVersionCollision
from histovault.core.schema import SatelliteDefinition, VaultSettings
from histovault.core.sentinels import is_sentinel
from histovault.observability.logger import get_logger
from histovault.observability.metrics import (
    increment_counter,
    maintenance_updates_total,
    version_collisions_total,
    versions_appended_total,
    versions_unchanged_total,
)
from histovault.utils.timestamps import ensure_utc
from histovault.warehouse.backend import SATELLITE_UNIQUE_COLUMNS, VaultBackend

logger = get_logger(__name__)


class AppendOutcome(BaseModel):
    """
    Result of appending a batch of candidate versions.

    Attributes:
        inserted: Versions written (with load_seq)
        unchanged: Candidates whose payload was already recorded
        collisions: Same-payload candidates collapsed into an earlier one
        conflicts: Candidate position -> reason, for refused candidates
    """

    inserted: list[AttributeVersion] = Field(default_factory=list)
    unchanged: int = 0
    collisions: list[DuplicateVersionCollision] = Field(default_factory=list)
    conflicts: dict[int, str] = Field(default_factory=dict)


class AttributeStore:
    """
    Versioned attribute history of one satellite.

    Args:
        backend: Storage backend
        definition: Satellite definition (attribute list and version)
        entity: Name of the entity type the satellite describes
        settings: Engine settings (dedup mode, load time conflict policy)
    """

    def __init__(
        self,
        backend: VaultBackend,
        definition: SatelliteDefinition,
        entity: str,
        settings: VaultSettings | None = None,
    ):
        self.backend = backend
        self.definition = definition
        self.entity = entity
        self.settings = settings or VaultSettings()
        self.schema = definition.attribute_schema
        self.fingerprinter = ChangeFingerprinter(self.schema)
        self.dedup_mode = definition.dedup_mode or self.settings.dedup_mode
        self.policy = self.settings.load_time_conflict_policy

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def unique_columns(self) -> tuple[str, ...]:
        return SATELLITE_UNIQUE_COLUMNS[self.dedup_mode]

    def candidate(
        self,
        entity_key: str,
        payload: Mapping[str, Any],
        load_time: datetime,
        source_tag: str,
    ) -> AttributeVersion:
        """
        Build (but do not store) a provisional version.

        Only the schema's attributes are kept; missing ones are null.

        Raises:
            KeyDerivationError: If an attribute value has no canonical form
        """
        projected = self.fingerprinter.project(payload)
        return AttributeVersion(
            entity_key=entity_key,
            diff_hash=self.fingerprinter.fingerprint(projected),
            load_time=load_time,
            source_tag=source_tag,
            is_current=True,
            end_time=None,
            payload=projected,
            schema_version=self.schema.version,
        )

    def append_if_changed(
        self,
        entity_key: str,
        payload: Mapping[str, Any],
        load_time: datetime,
        source_tag: str,
    ) -> AttributeVersion | None:
        """
        Append a version if its payload is new for the entity.

        Args:
            entity_key: Entity the payload describes
            payload: Attribute values
            load_time: Load time of the payload
            source_tag: Source delivering the payload

        Returns:
            The inserted version, or None if the payload was already recorded

        Raises:
            SimultaneousLoadTimeConflict: If the entity already has a different
                payload at this load time (policy "reject")
        """
        candidate = self.candidate(entity_key, payload, ensure_utc(load_time), source_tag)
        outcome = self.append_batch([candidate])
        if outcome.conflicts:
            stored = self.backend.fetch_versions(self.name, [entity_key])
            hashes = {v.diff_hash for v in stored if v.load_time == candidate.load_time}
            raise SimultaneousLoadTimeConflict(entity_key, candidate.load_time, sorted(hashes | {candidate.diff_hash}))
        return outcome.inserted[0] if outcome.inserted else None

    def append_batch(self, candidates: list[AttributeVersion]) -> AppendOutcome:
        """
        Append a batch of candidate versions.

        Candidates are deduplicated against the recorded history of their
        keys and against each other (see plan_appends); conflicting ones are
        reported by position, not raised.

        Raises:
            ConfigurationError: If stored rows of these keys were fingerprinted
                under another attribute schema version and the settings do not
                allow a schema migration
        """
        if not candidates:
            return AppendOutcome()

        entity_keys = {c.entity_key for c in candidates}
        stored = self.backend.fetch_versions(self.name, entity_keys)
        self.check_schema_version(stored)
        plan = plan_appends(stored, candidates, self.dedup_mode, self.policy, satellite=self.name)

        inserted = self.backend.insert_versions(self.name, plan.inserts, self.unique_columns)
        unchanged = len(plan.unchanged_indices) + (len(plan.inserts) - len(inserted))

        increment_counter(versions_appended_total, len(inserted), satellite=self.name)
        increment_counter(versions_unchanged_total, unchanged, satellite=self.name)
        increment_counter(version_collisions_total, len(plan.collisions), satellite=self.name)
        logger.debug(
            f"Satellite {self.name}: {len(inserted)} appended, {unchanged} unchanged, "
            f"{len(plan.collisions)} collisions, {len(plan.conflicts)} conflicts"
        )

        return AppendOutcome(
            inserted=inserted,
            unchanged=unchanged,
            collisions=plan.collisions,
            conflicts=plan.conflicts,
        )

    def check_schema_version(self, stored: Iterable[AttributeVersion]) -> None:
        """
        Refuse to compare diff hashes across attribute schema versions.

        A changed attribute list changes the hash of every row, so loading
        under it re-versions every entity. That is a migration and must be
        enabled explicitly with allow_schema_migration. Only the latest row of
        each key counts: a key already re-versioned passes.
        """
        latest: dict[str, AttributeVersion] = {}
        for version in stored:
            # Ghost rows are never compared against source payloads
            if is_sentinel(version.entity_key):
                continue
            kept = latest.get(version.entity_key)
            if kept is None or (version.load_time, version.load_seq or 0) > (kept.load_time, kept.load_seq or 0):
                latest[version.entity_key] = version

        versions = sorted({v.schema_version for v in latest.values() if v.schema_version != self.schema.version})
        if not versions:
            return
        if not self.settings.allow_schema_migration:
            raise ConfigurationError(
                f"Satellite '{self.name}' holds rows of attribute schema version "
                f"{', '.join(str(v) for v in versions)} but is configured with version "
                f"{self.schema.version}; set allow_schema_migration to re-version its entities"
            )
        logger.warning(
            f"Satellite {self.name}: migrating rows of schema version "
            f"{', '.join(str(v) for v in versions)} to version {self.schema.version}"
        )

    def reconcile_current_flags(self, entity_keys: Iterable[str] | None = None) -> int:
        """
        Recompute is_current and end_time for the given keys (all when None).

        Returns:
            Number of rows rewritten

        Raises:
            SimultaneousLoadTimeConflict: If a key has two versions at one load
                time (policy "reject")
        """
        if entity_keys is not None:
            entity_keys = set(entity_keys)
            if not entity_keys:
                return 0

        versions = self.backend.fetch_versions(self.name, entity_keys)
        updates = compute_version_updates(versions, self.policy)
        changed = self.backend.apply_version_updates(self.name, updates)

        increment_counter(maintenance_updates_total, changed, store=self.name, kind="satellite")
        logger.debug(f"Satellite {self.name}: reconciled {len(versions)} versions, {changed} rewritten")
        return changed

    def current(self) -> list[AttributeVersion]:
        """Current version of every entity."""
        return [v for v in self.backend.fetch_versions(self.name) if v.is_current]

    def history(self, entity_key: str) -> list[AttributeVersion]:
        """All versions of an entity, oldest first."""
        return sort_versions(self.backend.fetch_versions(self.name, [entity_key]), "insertion_order")

    def as_of(self, entity_key: str, at: datetime) -> AttributeVersion | None:
        """The version of an entity in force at `at`."""
        at = ensure_utc(at)
        applicable = None
        for version in self.history(entity_key):
            if version.load_time > at:
                break
            applicable = version
        return applicable
