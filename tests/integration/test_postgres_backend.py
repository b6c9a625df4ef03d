"""
Integration tests for the PostgreSQL vault backend.

Runs against a PostgreSQL testcontainer; every test gets its own schema.
"""

from datetime import date, datetime, timezone

import pytest

from histovault.core.hashing import KeyDeriver
from histovault.core.models import (
    AttributeVersion,
    EntityRecord,
    IntervalUpdate,
    PitRow,
    RejectedRow,
    RelationshipRecord,
    SourceBatch,
    ValidityInterval,
    VersionUpdate,
)
from histovault.vault import LoadCycle
from histovault.warehouse.memory_backend import MemoryVaultBackend
from histovault.warehouse.schema_mgmt import VaultSchemaManager

T1 = datetime(2024, 3, 1, tzinfo=timezone.utc)
T2 = datetime(2024, 3, 2, tzinfo=timezone.utc)
T3 = datetime(2024, 3, 3, tzinfo=timezone.utc)

deriver = KeyDeriver()
ACME = deriver.derive(["1"])
GLOBEX = deriver.derive(["2"])
JANSEN = deriver.derive(["100"])


def version(entity_key, name, load_time):
    return AttributeVersion(
        entity_key=entity_key,
        diff_hash=deriver.derive([name]),
        load_time=load_time,
        source_tag="werkportal",
        payload={"name": name, "city": None},
    )


@pytest.mark.integration
class TestSchemaManagement:
    """Test table creation"""

    def test_tables_created(self, db_pool, vault_config):
        manager = VaultSchemaManager(db_pool)
        manager.create_tables(vault_config)

        assert manager.existing_tables() == [
            "eff_client_company",
            "hub_client",
            "hub_company",
            "link_client_company",
            "pit_client_details",
            "pit_company_details",
            "sat_client_details",
            "sat_company_details",
            "vault_rejection",
        ]

    def test_create_tables_idempotent(self, db_pool, vault_config):
        manager = VaultSchemaManager(db_pool)
        first = manager.create_tables(vault_config)
        second = manager.create_tables(vault_config)
        assert first == second
        assert len(manager.existing_tables()) == 9


@pytest.mark.integration
class TestPostgresBackend:
    """Test each store's round trip and idempotence"""

    def test_entities(self, postgres_backend):
        record = EntityRecord(
            entity_key=ACME, business_key=("1",), first_seen=T1, source_tag="werkportal"
        )

        assert postgres_backend.insert_entities("company", [record]) == [record]
        assert postgres_backend.insert_entities("company", [record]) == []
        assert postgres_backend.fetch_entities("company") == [record]
        assert postgres_backend.fetch_entities("company", [GLOBEX]) == []
        assert postgres_backend.fetch_entities("company", []) == []

    def test_versions(self, postgres_backend):
        inserted = postgres_backend.insert_versions(
            "company_details", [version(ACME, "Acme", T1), version(ACME, "Acme Holding", T2)]
        )
        assert [v.load_seq for v in inserted] == [1, 2]

        again = postgres_backend.insert_versions("company_details", [version(ACME, "Acme", T3)])
        assert again == []

        stored = postgres_backend.fetch_versions("company_details", [ACME])
        assert [(v.load_time, v.payload["name"]) for v in stored] == [(T1, "Acme"), (T2, "Acme Holding")]
        assert stored[0].payload == {"name": "Acme", "city": None}

    def test_version_updates(self, postgres_backend):
        first, _ = postgres_backend.insert_versions(
            "company_details", [version(ACME, "Acme", T1), version(ACME, "Acme Holding", T2)]
        )
        update = VersionUpdate(load_seq=first.load_seq, entity_key=ACME, is_current=False, end_time=T2)

        assert postgres_backend.apply_version_updates("company_details", [update]) == 1
        assert postgres_backend.apply_version_updates("company_details", [update]) == 0

        stored = postgres_backend.fetch_versions("company_details", [ACME])
        assert (stored[0].is_current, stored[0].end_time) == (False, T2)
        assert (stored[1].is_current, stored[1].end_time) == (True, None)

    def test_relationships_and_intervals(self, postgres_backend):
        link_key = deriver.derive([JANSEN, ACME])
        record = RelationshipRecord(
            relationship_key=link_key,
            participant_keys=(JANSEN, ACME),
            load_time=T1,
            source_tag="werkportal",
        )
        assert postgres_backend.insert_relationships("client_company", [record]) == [record]
        assert postgres_backend.insert_relationships("client_company", [record]) == []
        assert postgres_backend.fetch_relationships("client_company", [link_key]) == [record]

        interval = ValidityInterval(
            relationship_key=link_key, driving_key=JANSEN, start_time=T1, source_tag="werkportal"
        )
        (stored,) = postgres_backend.insert_intervals("client_company", [interval])
        assert postgres_backend.insert_intervals("client_company", [interval]) == []

        update = IntervalUpdate(load_seq=stored.load_seq, driving_key=JANSEN, is_active=False, end_time=T2)
        assert postgres_backend.apply_interval_updates("client_company", [update]) == 1

        (closed,) = postgres_backend.fetch_intervals("client_company", [JANSEN])
        assert (closed.is_active, closed.end_time) == (False, T2)

    def test_replace_pit(self, postgres_backend):
        resolved = PitRow(
            entity_key=ACME,
            snapshot_date=date(2024, 3, 1),
            applicable_version_key=ACME,
            applicable_load_time=T1,
            applicable_diff_hash=deriver.derive(["Acme"]),
        )
        unresolved = PitRow(entity_key=GLOBEX, snapshot_date=date(2024, 3, 1))

        assert postgres_backend.replace_pit("company_details", [resolved, unresolved]) == 2
        assert postgres_backend.fetch_pit("company_details") == [resolved, unresolved]

        assert postgres_backend.replace_pit("company_details", [unresolved]) == 1
        assert postgres_backend.fetch_pit("company_details", date(2024, 3, 1)) == [unresolved]
        assert postgres_backend.fetch_pit("company_details", date(2024, 3, 2)) == []

    def test_rejections(self, postgres_backend):
        rows = [
            RejectedRow(
                cycle_id=cycle_id,
                entity="assignment",
                target="client_company",
                reason="orphan_relationship",
                message="unknown client",
                source_tag="werkportal",
                load_time=T1,
                values={"client_id": "300", "company_id": "3", "weight": 1.5},
            )
            for cycle_id in ("c1", "c2", "c2")
        ]
        assert postgres_backend.insert_rejections(rows) == 3

        latest = postgres_backend.fetch_rejections()
        assert [r.cycle_id for r in latest] == ["c2", "c2", "c1"]
        assert latest[0].values == {"client_id": "300", "company_id": "3", "weight": 1.5}
        assert latest[0].rejection_id is not None

        assert len(postgres_backend.fetch_rejections(cycle_id="c2")) == 2
        assert len(postgres_backend.fetch_rejections(limit=1)) == 1


@pytest.mark.integration
class TestLoadCycleOnPostgres:
    """A load cycle produces the same vault on PostgreSQL as in memory"""

    def batches(self, day):
        companies = {
            1: [("1", "Acme"), ("2", "Globex")],
            2: [("1", "Acme"), ("2", "Globex Holding"), ("3", "Initech")],
        }[day]
        load_time = T1 if day == 1 else T2
        return [
            SourceBatch.from_records(
                "company", [{"company_id": c, "name": n} for c, n in companies], "werkportal", load_time
            ),
            SourceBatch.from_records("client", [{"client_id": "100", "client_name": "Jansen"}], "werkportal", load_time),
            SourceBatch.from_records(
                "assignment", [{"client_id": "100", "company_id": str(day)}], "werkportal", load_time
            ),
        ]

    @staticmethod
    def state(backend):
        return (
            backend.fetch_entities("company"),
            [
                (v.entity_key, v.diff_hash, v.load_time, v.is_current, v.end_time)
                for v in backend.fetch_versions("company_details")
            ],
            backend.fetch_relationships("client_company"),
            [
                (i.relationship_key, i.driving_key, i.start_time, i.end_time, i.is_active)
                for i in backend.fetch_intervals("client_company")
            ],
        )

    def test_matches_memory_backend(self, postgres_backend, vault_config):
        memory = MemoryVaultBackend()
        for backend in (postgres_backend, memory):
            cycle = LoadCycle(backend, vault_config)
            cycle.run(self.batches(1), ensure_sentinels=True)
            cycle.run(self.batches(2), rebuild_pit=True)

        assert self.state(postgres_backend) == self.state(memory)
        assert postgres_backend.fetch_pit("company_details") == memory.fetch_pit("company_details")

    def test_rerun_is_idempotent(self, postgres_backend, vault_config):
        cycle = LoadCycle(postgres_backend, vault_config)
        cycle.run(self.batches(1))
        before = self.state(postgres_backend)

        result = cycle.run(self.batches(1))

        assert self.state(postgres_backend) == before
        assert result.summary()["versions_appended"] == 0
        assert result.maintenance_updates == 0

    def test_rejections_persisted(self, postgres_backend, vault_config):
        cycle = LoadCycle(postgres_backend, vault_config)
        orphan = SourceBatch.from_records(
            "assignment", [{"client_id": "300", "company_id": "1"}], "werkportal", T1
        )
        cycle.run(self.batches(1) + [orphan], cycle_id="nightly_20240301")

        (rejection,) = postgres_backend.fetch_rejections(cycle_id="nightly_20240301")
        assert rejection.reason == "orphan_relationship"
        assert rejection.values == {"client_id": "300", "company_id": "1"}
