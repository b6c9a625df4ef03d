"""
Unit tests for the relationship validity tracker (effectivity satellite).
"""

from datetime import datetime, timedelta, timezone

import pytest

from histovault.core.errors import SimultaneousLoadTimeConflict
from histovault.core.history import Observation
from histovault.core.schema import VaultSettings
from histovault.vault import ValidityTracker

DRIVER = "d" * 64
R1, R2 = "1" * 64, "2" * 64
T1 = datetime(2024, 3, 1, tzinfo=timezone.utc)
T2 = datetime(2024, 3, 8, tzinfo=timezone.utc)
T3 = datetime(2024, 3, 15, tzinfo=timezone.utc)


@pytest.fixture
def tracker(memory_backend):
    return ValidityTracker(memory_backend, "client_company")


@pytest.mark.unit
class TestValidityTracker:
    """Tests for ValidityTracker.record_observation"""

    def test_first_observation_opens_interval(self, tracker):
        opened = tracker.record_observation(R1, DRIVER, T1, "crm")
        assert opened.relationship_key == R1
        assert opened.is_active
        assert len(tracker.active()) == 1

    def test_same_relationship_is_noop(self, tracker):
        tracker.record_observation(R1, DRIVER, T1, "crm")
        assert tracker.record_observation(R1, DRIVER, T2, "crm") is None
        assert len(tracker.history(DRIVER)) == 1

    def test_supersession(self, tracker):
        """R1 then R2: R1 closes at R2's start, one active interval remains"""
        tracker.record_observation(R1, DRIVER, T1, "crm")
        tracker.record_observation(R2, DRIVER, T2, "crm")

        first, second = tracker.history(DRIVER)
        assert first.relationship_key == R1
        assert first.is_active is False
        assert first.end_time == T2
        assert second.relationship_key == R2
        assert second.is_active is True
        assert second.end_time is None
        assert [i.relationship_key for i in tracker.active()] == [R2]

    def test_absence_does_not_close(self, tracker):
        """Not observing a driving key leaves its interval open"""
        tracker.record_observation(R1, DRIVER, T1, "crm")
        tracker.reconcile()
        assert tracker.as_of(DRIVER, T3).relationship_key == R1
        assert tracker.active()[0].end_time is None

    def test_return_to_earlier_relationship(self, tracker):
        tracker.record_observation(R1, DRIVER, T1, "crm")
        tracker.record_observation(R2, DRIVER, T2, "crm")
        tracker.record_observation(R1, DRIVER, T3, "crm")
        assert [i.relationship_key for i in tracker.history(DRIVER)] == [R1, R2, R1]
        assert len(tracker.active()) == 1

    def test_conflict_raised(self, tracker):
        tracker.record_observation(R1, DRIVER, T1, "crm")
        with pytest.raises(SimultaneousLoadTimeConflict):
            tracker.record_observation(R2, DRIVER, T1, "crm")

    def test_insertion_order_policy(self, memory_backend):
        tracker = ValidityTracker(memory_backend, "client_company", VaultSettings(load_time_conflict_policy="insertion_order"))
        tracker.record_observation(R1, DRIVER, T1, "crm")
        tracker.record_observation(R2, DRIVER, T1, "crm")
        assert [i.relationship_key for i in tracker.active()] == [R2]

    def test_as_of(self, tracker):
        tracker.record_observation(R1, DRIVER, T1, "crm")
        tracker.record_observation(R2, DRIVER, T2, "crm")
        assert tracker.as_of(DRIVER, T1 - timedelta(days=1)) is None
        assert tracker.as_of(DRIVER, T2 - timedelta(seconds=1)).relationship_key == R1
        assert tracker.as_of(DRIVER, T2).relationship_key == R2

    def test_find_conflicts_writes_nothing(self, tracker):
        tracker.record_observation(R1, DRIVER, T1, "crm")
        observations = [
            Observation(relationship_key=R2, driving_key=DRIVER, observed_at=T1, source_tag="crm"),
            Observation(relationship_key=R2, driving_key="e" * 64, observed_at=T1, source_tag="crm"),
        ]

        conflicts = tracker.find_conflicts(observations)

        assert list(conflicts) == [0]
        assert len(tracker.history(DRIVER)) == 1
        assert tracker.history("e" * 64) == []

    def test_find_conflicts_insertion_order(self, memory_backend):
        tracker = ValidityTracker(memory_backend, "client_company", VaultSettings(load_time_conflict_policy="insertion_order"))
        tracker.record_observation(R1, DRIVER, T1, "crm")
        observation = Observation(relationship_key=R2, driving_key=DRIVER, observed_at=T1, source_tag="crm")
        assert tracker.find_conflicts([observation]) == {}
