"""
Vault definition models.

A vault definition names the entity types (hubs) with their business keys
and attribute histories (satellites), the relationships (links) between
them, and the engine policies. It is normally loaded from YAML by
VaultConfigLoader.
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from histovault.utils.validation import sanitize_sql_identifier, validate_source_tag

from .attribute_schema import AttributeSchema

DedupMode = Literal["all_history", "latest_version"]
ConflictPolicy = Literal["reject", "insertion_order"]
OrphanPolicy = Literal["reject", "sentinel"]
NullKeyPolicy = Literal["reject", "hash"]
PitUnresolved = Literal["null", "omit", "sentinel"]


def _identifier(value: str) -> str:
    # Names end up in table names (hub_<name>, sat_<name>, ...)
    return sanitize_sql_identifier(value)


class VaultSettings(BaseModel):
    """
    Engine policies.

    Attributes:
        dedup_mode: "all_history" skips any payload hash ever recorded for the
            key; "latest_version" only skips a hash equal to the chronological
            predecessor, so reverts are recorded
        load_time_conflict_policy: "reject" surfaces same-load-time rows for one
            key; "insertion_order" orders them by insertion sequence
        orphan_policy: "reject" or substitute the unknown "sentinel"
        null_key_policy: "reject" rows whose business key is entirely null, or
            "hash" them like any other key
        pit_unresolved: PIT cells with no applicable version are written as
            "null", dropped ("omit") or pointed at the unknown "sentinel"
        system_source_tag: Source tag of sentinel rows
        allow_schema_migration: Let satellites whose attribute schema version
            changed append to rows of the older version (every entity then
            gets a new version on its next load)
    """

    dedup_mode: DedupMode = "all_history"
    load_time_conflict_policy: ConflictPolicy = "reject"
    orphan_policy: OrphanPolicy = "reject"
    null_key_policy: NullKeyPolicy = "reject"
    pit_unresolved: PitUnresolved = "null"
    system_source_tag: str = "SYSTEM"
    allow_schema_migration: bool = False

    @field_validator("system_source_tag")
    @classmethod
    def check_source_tag(cls, v):
        return validate_source_tag(v)


class SatelliteDefinition(BaseModel):
    """
    Attribute history attached to an entity type.

    Attributes:
        name: Satellite name (table sat_<name>)
        attributes: Ordered fingerprinted attribute columns
        version: Attribute schema version
        dedup_mode: Per-satellite override of VaultSettings.dedup_mode
    """

    name: str
    attributes: list[str] = Field(..., min_length=1)
    version: int = Field(1, gt=0)
    dedup_mode: DedupMode | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _identifier(v)

    @property
    def attribute_schema(self) -> AttributeSchema:
        return AttributeSchema(name=self.name, version=self.version, attributes=tuple(self.attributes))


class EntityDefinition(BaseModel):
    """
    Entity type (hub).

    The discriminator separates key spaces reused by distinct source feeds:
    either a constant (`discriminator`) or taken per row from
    `discriminator_column`.
    """

    name: str
    business_key: list[str] = Field(..., min_length=1)
    discriminator: str | None = None
    discriminator_column: str | None = None
    satellites: list[SatelliteDefinition] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _identifier(v)

    @model_validator(mode="after")
    def check_discriminator(self):
        if self.discriminator is not None and self.discriminator_column is not None:
            raise ValueError(f"entity '{self.name}': set discriminator or discriminator_column, not both")
        return self


class ParticipantDefinition(BaseModel):
    """
    One side of a relationship.

    Attributes:
        alias: Name of the participant within the relationship
        entity: Entity type the participant refers to
        key_columns: Source columns holding the participant's business key,
            in the entity's business key order
    """

    alias: str
    entity: str
    key_columns: list[str] = Field(..., min_length=1)
    discriminator: str | None = None
    discriminator_column: str | None = None


class RelationshipDefinition(BaseModel):
    """
    Relationship (link) between two or more entity types.

    Attributes:
        name: Relationship name (tables link_<name> and eff_<name>)
        source: Name of the source batch feeding the relationship
        participants: Ordered participants; their order is part of the key
        role: Constant role code mixed into the relationship key
        role_column: Source column holding the role code per row
        driving: Alias of the participant whose observations drive validity
            intervals; no validity is tracked when unset
    """

    name: str
    source: str
    participants: list[ParticipantDefinition] = Field(..., min_length=2)
    role: str | None = None
    role_column: str | None = None
    driving: str | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return _identifier(v)

    @model_validator(mode="after")
    def check_participants(self):
        aliases = [p.alias for p in self.participants]
        if len(set(aliases)) != len(aliases):
            raise ValueError(f"relationship '{self.name}': participant aliases must be unique")
        if self.driving is not None and self.driving not in aliases:
            raise ValueError(f"relationship '{self.name}': driving participant '{self.driving}' is not a participant")
        if self.role is not None and self.role_column is not None:
            raise ValueError(f"relationship '{self.name}': set role or role_column, not both")
        return self

    @property
    def driving_index(self) -> int | None:
        if self.driving is None:
            return None
        return [p.alias for p in self.participants].index(self.driving)


class VaultConfig(BaseModel):
    """Complete vault definition."""

    settings: VaultSettings = Field(default_factory=VaultSettings)
    entities: list[EntityDefinition] = Field(..., min_length=1)
    relationships: list[RelationshipDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_references(self):
        entity_names = [e.name for e in self.entities]
        if len(set(entity_names)) != len(entity_names):
            raise ValueError("entity names must be unique")

        satellite_names = [s.name for e in self.entities for s in e.satellites]
        if len(set(satellite_names)) != len(satellite_names):
            raise ValueError("satellite names must be unique across entities")

        relationship_names = [r.name for r in self.relationships]
        if len(set(relationship_names)) != len(relationship_names):
            raise ValueError("relationship names must be unique")

        entities = {e.name: e for e in self.entities}
        for relationship in self.relationships:
            for participant in relationship.participants:
                entity = entities.get(participant.entity)
                if entity is None:
                    raise ValueError(
                        f"relationship '{relationship.name}' references unknown entity '{participant.entity}'"
                    )
                if len(participant.key_columns) != len(entity.business_key):
                    raise ValueError(
                        f"relationship '{relationship.name}': participant '{participant.alias}' has "
                        f"{len(participant.key_columns)} key columns, entity '{entity.name}' has "
                        f"{len(entity.business_key)}"
                    )
                if (
                    entity.discriminator_column is not None
                    and participant.discriminator is None
                    and participant.discriminator_column is None
                ):
                    raise ValueError(
                        f"relationship '{relationship.name}': participant '{participant.alias}' needs a "
                        f"discriminator because entity '{entity.name}' takes one per row"
                    )
        return self

    def entity(self, name: str) -> EntityDefinition:
        for entity in self.entities:
            if entity.name == name:
                return entity
        raise KeyError(f"unknown entity: {name}")

    def relationship(self, name: str) -> RelationshipDefinition:
        for relationship in self.relationships:
            if relationship.name == name:
                return relationship
        raise KeyError(f"unknown relationship: {name}")

    def satellite(self, name: str) -> tuple[EntityDefinition, SatelliteDefinition]:
        """Find a satellite and the entity it belongs to."""
        for entity in self.entities:
            for satellite in entity.satellites:
                if satellite.name == name:
                    return entity, satellite
        raise KeyError(f"unknown satellite: {name}")

    def satellites(self) -> list[tuple[EntityDefinition, SatelliteDefinition]]:
        return [(e, s) for e in self.entities for s in e.satellites]

    def relationships_for_source(self, source: str) -> list[RelationshipDefinition]:
        return [r for r in self.relationships if r.source == source]

    def dedup_mode_for(self, satellite: SatelliteDefinition) -> str:
        return satellite.dedup_mode or self.settings.dedup_mode
