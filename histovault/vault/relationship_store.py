"""
Relationship store (link): append-only associations between entities.
"""

from datetime import datetime
from typing import Iterable, Sequence

from histovault.core.errors import OrphanRelationshipError
from histovault.core.hashing import KeyDeriver
from histovault.core.models import RelationshipRecord
from histovault.core.schema import RelationshipDefinition
from histovault.observability.logger import get_logger
from histovault.observability.metrics import increment_counter, relationships_inserted_total
from histovault.utils.timestamps import ensure_utc, utc_now
from histovault.warehouse.backend import VaultBackend

from .entity_store import EntityStore

logger = get_logger(__name__)


class RelationshipStore:
    """
    Registry of distinct relationships of one relationship type.

    The relationship key is derived from the ordered participant keys, with
    the role code appended when the relationship defines one.

    Args:
        backend: Storage backend
        definition: Relationship definition
        entity_stores: Entity stores by entity name, used to check participants
        key_deriver: Key deriver (default: SHA-256)
    """

    def __init__(
        self,
        backend: VaultBackend,
        definition: RelationshipDefinition,
        entity_stores: dict[str, EntityStore] | None = None,
        key_deriver: KeyDeriver | None = None,
    ):
        self.backend = backend
        self.definition = definition
        self.entity_stores = entity_stores or {}
        self.key_deriver = key_deriver or KeyDeriver()

    @property
    def name(self) -> str:
        return self.definition.name

    def derive_key(self, participant_keys: Sequence[str], role: str | None = None) -> str:
        role = role if role is not None else self.definition.role
        return self.key_deriver.derive(list(participant_keys), discriminator=role)

    def candidate(
        self,
        participant_keys: Sequence[str],
        source_tag: str,
        load_time: datetime,
        role: str | None = None,
    ) -> RelationshipRecord:
        """Build (but do not store) the record of an association."""
        if len(participant_keys) != len(self.definition.participants):
            raise ValueError(
                f"relationship '{self.name}' has {len(self.definition.participants)} participants, "
                f"got {len(participant_keys)} keys"
            )
        role = role if role is not None else self.definition.role
        return RelationshipRecord(
            relationship_key=self.derive_key(participant_keys, role),
            participant_keys=tuple(participant_keys),
            role=role,
            load_time=load_time,
            source_tag=source_tag,
        )

    def missing_participants(self, participant_keys: Sequence[str]) -> list[tuple[str, str]]:
        """(alias, key) of participants absent from their entity store."""
        missing = []
        for participant, key in zip(self.definition.participants, participant_keys):
            store = self.entity_stores.get(participant.entity)
            if store is None:
                raise KeyError(f"no entity store for '{participant.entity}'")
            if not store.exists(key):
                missing.append((participant.alias, key))
        return missing

    def ensure(
        self,
        participant_keys: Sequence[str],
        source_tag: str,
        role: str | None = None,
        load_time: datetime | None = None,
        require_participants: bool = False,
    ) -> str:
        """
        Register an association if it is new.

        Args:
            participant_keys: Participant entity keys, in definition order
            source_tag: Source delivering the association
            role: Role code (defaults to the definition's constant role)
            load_time: load_time of a new association (defaults to now)
            require_participants: Check every participant exists in its entity store

        Returns:
            The relationship key

        Raises:
            OrphanRelationshipError: If a participant is missing and
                require_participants is set
        """
        if require_participants:
            missing = self.missing_participants(participant_keys)
            if missing:
                alias, key = missing[0]
                raise OrphanRelationshipError(self.name, alias, key)

        load_time = ensure_utc(load_time) if load_time is not None else utc_now()
        record = self.candidate(participant_keys, source_tag, load_time, role)
        self.ensure_many([record])
        return record.relationship_key

    def ensure_many(self, records: Iterable[RelationshipRecord]) -> list[RelationshipRecord]:
        """
        Register a batch of candidate records; an association seen several
        times keeps its earliest load time.

        Returns:
            The records actually inserted
        """
        earliest: dict[str, RelationshipRecord] = {}
        for record in records:
            kept = earliest.get(record.relationship_key)
            if kept is None or record.load_time < kept.load_time:
                earliest[record.relationship_key] = record

        if not earliest:
            return []

        inserted = self.backend.insert_relationships(self.name, [earliest[k] for k in sorted(earliest)])
        increment_counter(relationships_inserted_total, len(inserted), relationship=self.name)
        logger.debug(f"Link {self.name}: {len(inserted)} new of {len(earliest)} relationships")
        return inserted

    def get(self, relationship_key: str) -> RelationshipRecord | None:
        found = self.backend.fetch_relationships(self.name, [relationship_key])
        return found[0] if found else None

    def all(self) -> list[RelationshipRecord]:
        return self.backend.fetch_relationships(self.name)

    def for_participant(self, entity_key: str) -> list[RelationshipRecord]:
        """Relationships in which `entity_key` takes part."""
        return [r for r in self.all() if entity_key in r.participant_keys]
