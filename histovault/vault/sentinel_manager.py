"""
Sentinel record manager: ghost rows for join completeness.
"""

from histovault.core.models import AttributeVersion, EntityRecord
from histovault.core.schema import VaultConfig
from histovault.core.sentinels import ERROR_KEY, GHOST_LOAD_TIME, SENTINEL_SOURCE_TABLES, UNKNOWN_KEY
from histovault.observability.logger import get_logger
from histovault.warehouse.backend import SATELLITE_UNIQUE_COLUMNS, VaultBackend

logger = get_logger(__name__)


class SentinelManager:
    """
    Inserts the unknown and error ghost rows of every entity store and its
    satellites. Idempotent: each store ends up with exactly two ghost rows
    however often it runs.
    """

    def __init__(self, backend: VaultBackend, config: VaultConfig):
        self.backend = backend
        self.config = config

    def sentinel_entities(self) -> list[EntityRecord]:
        return [
            EntityRecord(
                entity_key=key,
                business_key=(),
                first_seen=GHOST_LOAD_TIME,
                source_tag=self.config.settings.system_source_tag,
                source_table=SENTINEL_SOURCE_TABLES[key],
            )
            for key in (UNKNOWN_KEY, ERROR_KEY)
        ]

    def sentinel_versions(self, attributes: list[str], schema_version: int) -> list[AttributeVersion]:
        # The diff hash of a ghost row is its own key; payloads are all null
        return [
            AttributeVersion(
                entity_key=key,
                diff_hash=key,
                load_time=GHOST_LOAD_TIME,
                source_tag=self.config.settings.system_source_tag,
                is_current=True,
                end_time=None,
                payload={name: None for name in attributes},
                schema_version=schema_version,
            )
            for key in (UNKNOWN_KEY, ERROR_KEY)
        ]

    def ensure_sentinels(self, entity_type: str) -> int:
        """
        Insert the ghost rows of one entity type if absent.

        Args:
            entity_type: Entity name

        Returns:
            Number of rows inserted (hub and satellites)
        """
        entity = self.config.entity(entity_type)
        inserted = len(self.backend.insert_entities(entity.name, self.sentinel_entities()))

        for satellite in entity.satellites:
            unique_columns = SATELLITE_UNIQUE_COLUMNS[self.config.dedup_mode_for(satellite)]
            versions = self.sentinel_versions(satellite.attributes, satellite.version)
            inserted += len(self.backend.insert_versions(satellite.name, versions, unique_columns))

        if inserted:
            logger.info(f"Inserted {inserted} sentinel rows for {entity.name}")
        return inserted

    def ensure_all(self) -> int:
        """Insert the ghost rows of every configured entity type."""
        return sum(self.ensure_sentinels(entity.name) for entity in self.config.entities)
