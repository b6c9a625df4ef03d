"""
Unit tests for the attribute history store (satellite).
"""

from datetime import datetime, timezone

import pytest

from histovault.core.errors import ConfigurationError, SimultaneousLoadTimeConflict
from histovault.core.hashing import KeyDeriver
from histovault.core.models import AttributeVersion
from histovault.core.schema import SatelliteDefinition, VaultSettings
from histovault.core.sentinels import GHOST_LOAD_TIME, UNKNOWN_KEY
from histovault.vault import AttributeStore

KEY = KeyDeriver().derive([1])
T_A = datetime(2024, 3, 1, tzinfo=timezone.utc)
T_B = datetime(2024, 3, 2, tzinfo=timezone.utc)
T_C = datetime(2024, 3, 3, tzinfo=timezone.utc)

DETAILS = SatelliteDefinition(name="company_details", attributes=["name"])


def make_store(backend, **settings):
    return AttributeStore(backend, DETAILS, "company", VaultSettings(**settings))


@pytest.mark.unit
class TestAppendIfChanged:
    """Tests for AttributeStore.append_if_changed"""

    def test_idempotent_append(self, memory_backend):
        store = make_store(memory_backend)
        first = store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        second = store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")

        assert first is not None
        assert first.load_seq is not None
        assert second is None
        assert len(store.history(KEY)) == 1

    def test_scenario_unchanged_then_changed(self, memory_backend):
        """A: X, B: X (unchanged), C: Y -> two versions tiled at C"""
        store = make_store(memory_backend)
        store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        store.reconcile_current_flags([KEY])
        assert store.append_if_changed(KEY, {"name": "X"}, T_B, "werkportal") is None
        store.reconcile_current_flags([KEY])

        history = store.history(KEY)
        assert len(history) == 1
        assert history[0].is_current

        store.append_if_changed(KEY, {"name": "Y"}, T_C, "werkportal")
        store.reconcile_current_flags([KEY])

        first, second = store.history(KEY)
        assert first.payload == {"name": "X"}
        assert first.is_current is False
        assert first.end_time == T_C
        assert second.payload == {"name": "Y"}
        assert second.is_current is True
        assert second.end_time is None

    def test_provisional_current_until_reconciled(self, memory_backend):
        store = make_store(memory_backend)
        store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        store.append_if_changed(KEY, {"name": "Y"}, T_B, "werkportal")
        assert len(store.current()) == 2
        assert store.reconcile_current_flags() == 1
        assert [v.payload["name"] for v in store.current()] == ["Y"]

    def test_reconcile_idempotent(self, memory_backend):
        store = make_store(memory_backend)
        store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        store.append_if_changed(KEY, {"name": "Y"}, T_B, "werkportal")
        store.reconcile_current_flags([KEY])
        assert store.reconcile_current_flags([KEY]) == 0
        assert store.reconcile_current_flags([]) == 0

    def test_out_of_order_load(self, memory_backend):
        """A late-arriving older version is tiled before the current one"""
        store = make_store(memory_backend)
        store.append_if_changed(KEY, {"name": "Y"}, T_C, "werkportal")
        store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        store.reconcile_current_flags([KEY])

        first, second = store.history(KEY)
        assert first.load_time == T_A
        assert first.end_time == T_C
        assert second.is_current

    def test_same_load_time_conflict_raised(self, memory_backend):
        store = make_store(memory_backend)
        store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        with pytest.raises(SimultaneousLoadTimeConflict) as exc_info:
            store.append_if_changed(KEY, {"name": "Y"}, T_A, "werkportal")
        assert exc_info.value.load_time == T_A
        assert len(exc_info.value.hashes) == 2

    def test_same_load_time_insertion_order(self, memory_backend):
        store = make_store(memory_backend, load_time_conflict_policy="insertion_order")
        store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        store.append_if_changed(KEY, {"name": "Y"}, T_A, "werkportal")
        store.reconcile_current_flags([KEY])
        assert [v.payload["name"] for v in store.current()] == ["Y"]

    def test_payload_projected_to_schema(self, memory_backend):
        store = make_store(memory_backend)
        inserted = store.append_if_changed(KEY, {"name": "X", "company_id": 1}, T_A, "werkportal")
        assert inserted.payload == {"name": "X"}
        assert inserted.schema_version == 1

    def test_as_of(self, memory_backend):
        store = make_store(memory_backend)
        store.append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        store.append_if_changed(KEY, {"name": "Y"}, T_C, "werkportal")

        assert store.as_of(KEY, datetime(2024, 2, 1, tzinfo=timezone.utc)) is None
        assert store.as_of(KEY, T_B).payload == {"name": "X"}
        assert store.as_of(KEY, T_C).payload == {"name": "Y"}


@pytest.mark.unit
class TestAppendBatch:
    """Tests for AttributeStore.append_batch"""

    def test_collision_reported(self, memory_backend):
        store = make_store(memory_backend)
        candidates = [
            store.candidate(KEY, {"name": "X"}, T_B, "werkportal"),
            store.candidate(KEY, {"name": "X"}, T_A, "werkportal"),
        ]
        outcome = store.append_batch(candidates)

        assert [v.load_time for v in outcome.inserted] == [T_A]
        assert outcome.unchanged == 1
        assert outcome.collisions[0].discarded_load_time == T_B

    def test_conflicts_reported_not_raised(self, memory_backend):
        store = make_store(memory_backend)
        outcome = store.append_batch([
            store.candidate(KEY, {"name": "X"}, T_A, "werkportal"),
            store.candidate(KEY, {"name": "Y"}, T_A, "werkportal"),
        ])
        assert outcome.inserted == []
        assert set(outcome.conflicts) == {0, 1}

    def test_latest_version_records_revert(self, memory_backend):
        definition = SatelliteDefinition(name="company_status", attributes=["status"], dedup_mode="latest_version")
        store = AttributeStore(memory_backend, definition, "company")
        for when, status in ((T_A, "open"), (T_B, "closed"), (T_C, "open")):
            store.append_if_changed(KEY, {"status": status}, when, "werkportal")
        store.reconcile_current_flags([KEY])

        assert [v.payload["status"] for v in store.history(KEY)] == ["open", "closed", "open"]
        assert store.history(KEY)[-1].is_current

    def test_all_history_skips_revert(self, memory_backend):
        store = make_store(memory_backend)
        for when, name in ((T_A, "X"), (T_B, "Y"), (T_C, "X")):
            store.append_if_changed(KEY, {"name": name}, when, "werkportal")
        assert len(store.history(KEY)) == 2

    def test_empty_batch(self, memory_backend):
        outcome = make_store(memory_backend).append_batch([])
        assert outcome.inserted == []
        assert outcome.unchanged == 0


DETAILS_V2 = SatelliteDefinition(name="company_details", attributes=["name", "city"], version=2)


def make_store_v2(backend, **settings):
    return AttributeStore(backend, DETAILS_V2, "company", VaultSettings(**settings))


@pytest.mark.unit
class TestSchemaVersion:
    """Loading under a changed attribute list"""

    def test_changed_attribute_list_refused(self, memory_backend):
        """An unchanged source row is not re-versioned behind the caller's back"""
        make_store(memory_backend).append_if_changed(KEY, {"name": "X", "city": "U"}, T_A, "werkportal")

        store = make_store_v2(memory_backend)
        with pytest.raises(ConfigurationError, match="allow_schema_migration"):
            store.append_if_changed(KEY, {"name": "X", "city": "U"}, T_B, "werkportal")

        history = store.history(KEY)
        assert len(history) == 1
        assert history[0].schema_version == 1
        assert history[0].is_current

    def test_migration_opt_in(self, memory_backend):
        """With the opt-in every key gets one version under the new schema"""
        make_store(memory_backend).append_if_changed(KEY, {"name": "X", "city": "U"}, T_A, "werkportal")

        store = make_store_v2(memory_backend, allow_schema_migration=True)
        migrated = store.append_if_changed(KEY, {"name": "X", "city": "U"}, T_B, "werkportal")
        store.reconcile_current_flags([KEY])

        assert migrated is not None
        assert migrated.schema_version == 2
        assert [(v.schema_version, v.is_current) for v in store.history(KEY)] == [(1, False), (2, True)]

    def test_migrated_key_loads_without_opt_in(self, memory_backend):
        make_store(memory_backend).append_if_changed(KEY, {"name": "X"}, T_A, "werkportal")
        make_store_v2(memory_backend, allow_schema_migration=True).append_if_changed(
            KEY, {"name": "X", "city": "U"}, T_B, "werkportal"
        )

        store = make_store_v2(memory_backend)
        assert store.append_if_changed(KEY, {"name": "X", "city": "U"}, T_C, "werkportal") is None
        assert len(store.history(KEY)) == 2

    def test_ghost_rows_ignored(self, memory_backend):
        """Ghost rows keep the schema version they were inserted with"""
        ghost = AttributeVersion(
            entity_key=UNKNOWN_KEY,
            diff_hash=UNKNOWN_KEY,
            load_time=GHOST_LOAD_TIME,
            source_tag="SYSTEM",
            payload={"name": None},
            schema_version=1,
        )

        make_store_v2(memory_backend).check_schema_version([ghost])
