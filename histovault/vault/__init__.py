"""
Vault stores and the load cycle that drives them.
"""

from .attribute_store import AppendOutcome, AttributeStore
from .entity_store import EntityStore
from .load_cycle import LoadCycle
from .pit_projector import PitProjector
from .relationship_store import RelationshipStore
from .sentinel_manager import SentinelManager
from .validity_tracker import ObservationOutcome, ValidityTracker

__all__ = [
    "EntityStore",
    "AttributeStore",
    "AppendOutcome",
    "RelationshipStore",
    "ValidityTracker",
    "ObservationOutcome",
    "PitProjector",
    "SentinelManager",
    "LoadCycle",
]
