"""
Vault definitions: attribute schemas, entity/relationship definitions and
the YAML loader.
"""

from .attribute_schema import AttributeSchema
from .config import VaultConfigLoader, load_config_dict
from .definitions import (
    EntityDefinition,
    ParticipantDefinition,
    RelationshipDefinition,
    SatelliteDefinition,
    VaultConfig,
    VaultSettings,
)

__all__ = [
    "AttributeSchema",
    "EntityDefinition",
    "SatelliteDefinition",
    "ParticipantDefinition",
    "RelationshipDefinition",
    "VaultSettings",
    "VaultConfig",
    "VaultConfigLoader",
    "load_config_dict",
]
