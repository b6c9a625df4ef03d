"""
Entity store (hub): the append-only registry of business keys.
"""

from datetime import datetime
from typing import Any, Iterable, Sequence

from histovault.core.hashing import KeyDeriver
from histovault.core.models import EntityRecord
from histovault.core.schema import EntityDefinition
from histovault.observability.logger import get_logger
from histovault.observability.metrics import entities_inserted_total, increment_counter
from histovault.utils.timestamps import ensure_utc, utc_now
from histovault.warehouse.backend import VaultBackend

logger = get_logger(__name__)


class EntityStore:
    """
    Registry of distinct business keys of one entity type.

    Rows are created once and never updated or deleted. The store is
    key-agnostic: it registers whatever key it is given, including an
    all-null one (null-key policy is applied upstream).
    """

    def __init__(self, backend: VaultBackend, definition: EntityDefinition, key_deriver: KeyDeriver | None = None):
        self.backend = backend
        self.definition = definition
        self.key_deriver = key_deriver or KeyDeriver()

    @property
    def name(self) -> str:
        return self.definition.name

    def candidate(
        self,
        business_key: Sequence[Any],
        source_tag: str,
        load_time: datetime,
        source_table: str | None = None,
    ) -> EntityRecord:
        """
        Build (but do not store) the record of a business key.

        `source_table` is the key space discriminator; it defaults to the
        entity's constant discriminator.

        Raises:
            KeyDerivationError: If the key cannot be canonicalized
        """
        discriminator = source_table if source_table is not None else self.definition.discriminator
        canonical = self.key_deriver.canonical_key(business_key, discriminator, self.definition.business_key)
        return EntityRecord(
            entity_key=self.key_deriver.derive_canonical(canonical),
            business_key=canonical,
            first_seen=load_time,
            source_tag=source_tag,
            source_table=discriminator,
        )

    def ensure(
        self,
        business_key: Sequence[Any],
        source_tag: str,
        source_table: str | None = None,
        load_time: datetime | None = None,
    ) -> str:
        """
        Register a business key if it is new.

        Args:
            business_key: Ordered business key fields
            source_tag: Source delivering the key
            source_table: Key space discriminator
            load_time: first_seen of a new key (defaults to now)

        Returns:
            The surrogate key, whether or not it was inserted
        """
        load_time = ensure_utc(load_time) if load_time is not None else utc_now()
        record = self.candidate(business_key, source_tag, load_time, source_table)
        self.ensure_many([record])
        return record.entity_key

    def ensure_many(self, records: Iterable[EntityRecord]) -> list[EntityRecord]:
        """
        Register a batch of candidate records.

        A key seen several times in the batch keeps its earliest first_seen.

        Returns:
            The records actually inserted
        """
        earliest: dict[str, EntityRecord] = {}
        for record in records:
            kept = earliest.get(record.entity_key)
            if kept is None or record.first_seen < kept.first_seen:
                earliest[record.entity_key] = record

        if not earliest:
            return []

        inserted = self.backend.insert_entities(self.name, [earliest[k] for k in sorted(earliest)])
        increment_counter(entities_inserted_total, len(inserted), entity=self.name)
        logger.debug(f"Hub {self.name}: {len(inserted)} new of {len(earliest)} keys")
        return inserted

    def get(self, entity_key: str) -> EntityRecord | None:
        found = self.backend.fetch_entities(self.name, [entity_key])
        return found[0] if found else None

    def exists(self, entity_key: str) -> bool:
        return self.get(entity_key) is not None

    def existing_keys(self, entity_keys: Iterable[str]) -> set[str]:
        """The subset of `entity_keys` registered in the store."""
        return {record.entity_key for record in self.backend.fetch_entities(self.name, entity_keys)}

    def keys(self) -> list[str]:
        return [record.entity_key for record in self.backend.fetch_entities(self.name)]

    def all(self) -> list[EntityRecord]:
        return self.backend.fetch_entities(self.name)
