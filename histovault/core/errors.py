"""
Exception hierarchy for the historization engine.

Errors raised here are the ones a caller is expected to handle: a row whose
key cannot be derived, two versions of one entity claiming the same load
time, a relationship pointing at an unknown participant, or an invalid
vault definition.
"""

from datetime import datetime
from typing import Any


class VaultError(Exception):
    """Base class for all histovault errors."""
    pass


class KeyDerivationError(VaultError):
    """Raised when business key or attribute fields cannot be canonicalized."""

    def __init__(self, message: str, field_name: str | None = None, value: Any = None):
        self.field_name = field_name
        self.value = value
        prefix = f"{field_name}: " if field_name else ""
        super().__init__(f"{prefix}{message}")


class SimultaneousLoadTimeConflict(VaultError):
    """
    Raised when two rows for the same key share an identical load time.

    The engine cannot order such rows chronologically, so under the default
    "reject" policy the conflict is surfaced instead of being broken by an
    arbitrary tiebreak.
    """

    def __init__(self, key: str, load_time: datetime, hashes: list[str] | None = None):
        self.key = key
        self.load_time = load_time
        self.hashes = sorted(hashes or [])
        super().__init__(
            f"Key {key} has {max(len(self.hashes), 2)} rows at load time "
            f"{load_time.isoformat()}; chronological order is undefined"
        )


class OrphanRelationshipError(VaultError):
    """Raised when a relationship references a participant absent from its entity store."""

    def __init__(self, relationship: str, participant: str, participant_key: str | None):
        self.relationship = relationship
        self.participant = participant
        self.participant_key = participant_key
        super().__init__(
            f"Relationship '{relationship}' references unknown {participant} key {participant_key}"
        )


class ConfigurationError(VaultError, ValueError):
    """Raised when a vault definition is structurally invalid."""
    pass
