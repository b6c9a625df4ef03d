"""
Load cycle orchestration.

One cycle historizes the row sets of one snapshot, in strictly sequential
phases:

1. staging     - derive entity keys, diff hashes and relationship keys per
                 row; rows that cannot be keyed are rejected
2. append      - hubs, then satellites, then links (orphan participants are
                 rejected or mapped to the unknown sentinel, rows refused by
                 their validity tracker are rejected first), then validity
                 observations
3. maintenance - reconcile current flags of the touched satellite keys and
                 the intervals of the touched driving keys
4. report      - persist rejections, emit metrics and logs

Every write is idempotent, so a failed cycle is retried by running it again
from the start.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable

from histovault.core.errors import KeyDerivationError
from histovault.core.hashing import KeyDeriver, is_null_key
from histovault.core.history import Observation
from histovault.core.models import (
    AttributeVersion,
    CycleResult,
    EntityRecord,
    RejectedRow,
    RelationshipRecord,
    SourceBatch,
    SourceRow,
)
from histovault.core.schema import RelationshipDefinition, VaultConfig
from histovault.core.sentinels import ERROR_KEY, UNKNOWN_KEY, is_sentinel
from histovault.observability.logger import get_logger, log_operation
from histovault.observability.metrics import record_cycle, record_rejection
from histovault.utils.timestamps import utc_now
from histovault.warehouse.backend import VaultBackend

from .attribute_store import AttributeStore
from .entity_store import EntityStore
from .pit_projector import PitProjector
from .relationship_store import RelationshipStore
from .sentinel_manager import SentinelManager
from .validity_tracker import ValidityTracker

logger = get_logger(__name__)


class _StagedRelationship:
    """A relationship row between staging and the append phase."""

    __slots__ = ("row", "participant_keys", "role")

    def __init__(self, row: SourceRow, participant_keys: list[str], role: str | None):
        self.row = row
        self.participant_keys = participant_keys
        self.role = role


class LoadCycle:
    """
    Runs load cycles against one vault definition and backend.

    Args:
        backend: Storage backend
        config: Vault definition
        key_deriver: Key deriver shared by all stores
    """

    def __init__(self, backend: VaultBackend, config: VaultConfig, key_deriver: KeyDeriver | None = None):
        self.backend = backend
        self.config = config
        self.settings = config.settings
        self.key_deriver = key_deriver or KeyDeriver()

        self.entity_stores = {
            entity.name: EntityStore(backend, entity, self.key_deriver) for entity in config.entities
        }
        self.attribute_stores = {
            satellite.name: AttributeStore(backend, satellite, entity.name, self.settings)
            for entity, satellite in config.satellites()
        }
        self.relationship_stores = {
            relationship.name: RelationshipStore(backend, relationship, self.entity_stores, self.key_deriver)
            for relationship in config.relationships
        }
        self.validity_trackers = {
            relationship.name: ValidityTracker(backend, relationship.name, self.settings)
            for relationship in config.relationships
            if relationship.driving is not None
        }
        self.pit_projectors = {
            satellite.name: PitProjector(backend, entity.name, satellite.name, self.settings)
            for entity, satellite in config.satellites()
        }
        self.sentinel_manager = SentinelManager(backend, config)

    def run(
        self,
        batches: Iterable[SourceBatch],
        cycle_id: str | None = None,
        ensure_sentinels: bool = False,
        rebuild_pit: bool = False,
        snapshot_dates: Iterable[date] | None = None,
    ) -> CycleResult:
        """
        Historize one snapshot.

        Args:
            batches: One row set per source name
            cycle_id: Identifier stamped on rejections (generated when omitted)
            ensure_sentinels: Insert ghost rows before appending
            rebuild_pit: Rebuild every PIT projection after maintenance
            snapshot_dates: PIT grid for rebuild_pit (default: load dates)

        Returns:
            CycleResult

        Raises:
            SimultaneousLoadTimeConflict: If maintenance finds two stored rows of
                one key at one load time (policy "reject")
            ConfigurationError: If a satellite's attribute schema version changed
                without allow_schema_migration
            psycopg.DatabaseError: On storage failure (retry the whole cycle)
        """
        batches = list(batches)
        started_at = utc_now()
        result = CycleResult(
            cycle_id=cycle_id or f"cycle_{started_at:%Y%m%d_%H%M%S_%f}",
            started_at=started_at,
            rows_received=sum(len(batch) for batch in batches),
        )
        self._check_sources(batches)

        try:
            with log_operation("Load cycle", logger=logger, cycle_id=result.cycle_id):
                # Substituted links must point at ghost rows that exist
                if ensure_sentinels or self.settings.orphan_policy == "sentinel":
                    result.sentinels_inserted = self.sentinel_manager.ensure_all()

                hubs, versions, links = self._stage(batches, result)
                touched_keys, touched_drivers = self._append(hubs, versions, links, result)
                self._maintain(touched_keys, touched_drivers, result)

                if rebuild_pit:
                    grid = list(snapshot_dates) if snapshot_dates is not None else None
                    for projector in self.pit_projectors.values():
                        result.pit.append(projector.rebuild(grid))

                self._report(result)
        except Exception:
            record_cycle(result.rows_received, (utc_now() - started_at).total_seconds(), success=False)
            raise

        result.finished_at = utc_now()
        record_cycle(result.rows_received, result.duration_seconds, success=True)
        logger.info("Load cycle summary", extra=result.summary())
        return result

    # Staging

    def _check_sources(self, batches: list[SourceBatch]) -> None:
        known = {e.name for e in self.config.entities} | {r.source for r in self.config.relationships}
        for batch in batches:
            if batch.entity not in known:
                logger.warning(f"Batch '{batch.entity}' matches no entity or relationship source; ignored")

    def _reject(self, result: CycleResult, row: SourceRow, entity: str, target: str, reason: str, message: str):
        result.rejections.append(
            RejectedRow(
                cycle_id=result.cycle_id,
                entity=entity,
                target=target,
                reason=reason,
                message=message,
                source_tag=row.source_tag,
                load_time=row.load_time,
                values=row.values,
            )
        )
        logger.warning(f"Rejected {entity} row for {target} ({reason}): {message}")

    def _stage(self, batches: list[SourceBatch], result: CycleResult):
        hubs: dict[str, list[EntityRecord]] = defaultdict(list)
        versions: dict[str, list[tuple[SourceRow, str, AttributeVersion]]] = defaultdict(list)
        links: dict[str, list[_StagedRelationship]] = defaultdict(list)

        entities = {e.name: e for e in self.config.entities}
        for batch in batches:
            definition = entities.get(batch.entity)
            if definition is not None:
                self._stage_entity_rows(batch, definition, hubs, versions, result)
            for relationship in self.config.relationships_for_source(batch.entity):
                self._stage_relationship_rows(batch, relationship, links, result)

        return hubs, versions, links

    def _stage_entity_rows(self, batch, definition, hubs, versions, result):
        store = self.entity_stores[definition.name]
        for row in batch.rows:
            try:
                fields, discriminator = self.key_deriver.row_key_fields(
                    row.values, definition.business_key,
                    definition.discriminator, definition.discriminator_column,
                )
                if is_null_key(fields) and self.settings.null_key_policy == "reject":
                    self._reject(result, row, batch.entity, definition.name, "null_business_key",
                                 "business key is entirely null")
                    continue
                record = store.candidate(fields, row.source_tag, row.load_time, discriminator)
            except KeyDerivationError as e:
                self._reject(result, row, batch.entity, definition.name, "key_derivation", str(e))
                continue

            hubs[definition.name].append(record)
            for satellite in definition.satellites:
                attribute_store = self.attribute_stores[satellite.name]
                try:
                    candidate = attribute_store.candidate(record.entity_key, row.values, row.load_time, row.source_tag)
                except KeyDerivationError as e:
                    self._reject(result, row, batch.entity, satellite.name, "key_derivation", str(e))
                    continue
                versions[satellite.name].append((row, batch.entity, candidate))

    def _stage_relationship_rows(self, batch, relationship: RelationshipDefinition, links, result):
        use_sentinels = self.settings.orphan_policy == "sentinel"
        for row in batch.rows:
            participant_keys = []
            rejected = False
            for participant in relationship.participants:
                entity = self.config.entity(participant.entity)
                discriminator = participant.discriminator
                if discriminator is None and participant.discriminator_column is None:
                    discriminator = entity.discriminator
                try:
                    fields, discriminator = self.key_deriver.row_key_fields(
                        row.values, participant.key_columns,
                        discriminator, participant.discriminator_column,
                    )
                    if is_null_key(fields):
                        if not use_sentinels:
                            self._reject(result, row, batch.entity, relationship.name, "orphan_relationship",
                                         f"participant '{participant.alias}' has a null key")
                            rejected = True
                            break
                        participant_keys.append(UNKNOWN_KEY)
                        continue
                    participant_keys.append(self.key_deriver.derive(fields, discriminator, participant.key_columns))
                except KeyDerivationError as e:
                    if not use_sentinels:
                        self._reject(result, row, batch.entity, relationship.name, "key_derivation",
                                     f"participant '{participant.alias}': {e}")
                        rejected = True
                        break
                    participant_keys.append(ERROR_KEY)
            if rejected:
                continue

            role = relationship.role
            if relationship.role_column is not None:
                role = row.values.get(relationship.role_column)
                role = None if role is None else str(role)
            links[relationship.name].append(_StagedRelationship(row, participant_keys, role))

    # Append phase

    def _append(self, hubs, versions, links, result: CycleResult):
        for entity, records in hubs.items():
            inserted = self.entity_stores[entity].ensure_many(records)
            result.entities_inserted[entity] = len(inserted)

        touched_keys: dict[str, set[str]] = defaultdict(set)
        for satellite, staged in versions.items():
            store = self.attribute_stores[satellite]
            outcome = store.append_batch([candidate for _, _, candidate in staged])
            result.versions_appended[satellite] = len(outcome.inserted)
            result.versions_unchanged[satellite] = outcome.unchanged
            result.collisions.extend(outcome.collisions)
            for position, message in outcome.conflicts.items():
                row, source, _ = staged[position]
                self._reject(result, row, source, satellite, "simultaneous_load_time", message)
            touched_keys[satellite].update(candidate.entity_key for _, _, candidate in staged)

        touched_drivers: dict[str, set[str]] = defaultdict(set)
        for name, staged in links.items():
            relationship = self.config.relationship(name)
            accepted = self._resolve_orphans(relationship, staged, result)
            store = self.relationship_stores[name]
            tracker = self.validity_trackers.get(name)

            records = [
                store.candidate(item.participant_keys, item.row.source_tag, item.row.load_time, item.role)
                for item in accepted
            ]

            observed: list[tuple[_StagedRelationship, Observation]] = []
            if tracker is not None:
                index = relationship.driving_index
                observed = [
                    (
                        item,
                        Observation(
                            relationship_key=record.relationship_key,
                            driving_key=record.participant_keys[index],
                            observed_at=item.row.load_time,
                            source_tag=item.row.source_tag,
                        ),
                    )
                    for item, record in zip(accepted, records)
                    if not is_sentinel(record.participant_keys[index])
                ]
                # Refused observations never reach the relationship store
                conflicts = tracker.find_conflicts([observation for _, observation in observed])
                refused = set()
                for position, message in conflicts.items():
                    item, _ = observed[position]
                    refused.add(id(item))
                    self._reject(result, item.row, relationship.source, name, "simultaneous_load_time", message)
                records = [record for item, record in zip(accepted, records) if id(item) not in refused]
                observed = [(item, o) for item, o in observed if id(item) not in refused]

            inserted = store.ensure_many(records)
            result.relationships_inserted[name] = len(inserted)

            if tracker is None:
                continue
            outcome = tracker.record_batch([observation for _, observation in observed])
            result.intervals_opened[name] = len(outcome.opened)
            for position, message in outcome.conflicts.items():
                item, _ = observed[position]
                self._reject(result, item.row, relationship.source, name, "simultaneous_load_time", message)
            touched_drivers[name].update(o.driving_key for _, o in observed)

        return touched_keys, touched_drivers

    def _resolve_orphans(self, relationship: RelationshipDefinition, staged: list[_StagedRelationship],
                         result: CycleResult) -> list[_StagedRelationship]:
        """Check participants exist in their hubs; substitute or reject missing ones."""
        wanted: dict[str, set[str]] = defaultdict(set)
        for item in staged:
            for participant, key in zip(relationship.participants, item.participant_keys):
                if not is_sentinel(key):
                    wanted[participant.entity].add(key)
        existing = {
            entity: self.entity_stores[entity].existing_keys(keys) for entity, keys in wanted.items()
        }

        accepted = []
        for item in staged:
            missing = [
                (position, participant)
                for position, (participant, key) in enumerate(zip(relationship.participants, item.participant_keys))
                if not is_sentinel(key) and key not in existing[participant.entity]
            ]
            if missing and self.settings.orphan_policy != "sentinel":
                position, participant = missing[0]
                self._reject(
                    result, item.row, relationship.source, relationship.name, "orphan_relationship",
                    f"Relationship '{relationship.name}' references unknown {participant.alias} "
                    f"key {item.participant_keys[position]}",
                )
                continue
            for position, _ in missing:
                item.participant_keys[position] = UNKNOWN_KEY
            accepted.append(item)
        return accepted

    # Maintenance phase

    def _maintain(self, touched_keys, touched_drivers, result: CycleResult) -> None:
        for satellite, keys in touched_keys.items():
            result.maintenance_updates += self.attribute_stores[satellite].reconcile_current_flags(keys)
        for relationship, keys in touched_drivers.items():
            result.maintenance_updates += self.validity_trackers[relationship].reconcile(keys)

    # Report phase

    def _report(self, result: CycleResult) -> None:
        if not result.rejections:
            return
        self.backend.insert_rejections(result.rejections)
        counts: dict[tuple[str, str], int] = defaultdict(int)
        for rejection in result.rejections:
            counts[(rejection.entity, rejection.reason)] += 1
        for (entity, reason), count in counts.items():
            record_rejection(entity, reason, count)
