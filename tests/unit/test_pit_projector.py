"""
Unit tests for the PIT projector.
"""

from datetime import date, datetime, timezone

import pytest

from histovault.core.schema import VaultSettings
from histovault.vault import AttributeStore, EntityStore, PitProjector, SentinelManager

T1 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 3, 3, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def history(memory_backend, vault_config):
    hub = EntityStore(memory_backend, vault_config.entity("company"))
    _, details = vault_config.satellite("company_details")
    satellite = AttributeStore(memory_backend, details, "company")

    acme = hub.ensure([1], "werkportal", load_time=T1)
    globex = hub.ensure([2], "werkportal", load_time=T2)
    satellite.append_if_changed(acme, {"name": "Acme", "city": "Utrecht"}, T1, "werkportal")
    satellite.append_if_changed(acme, {"name": "Acme", "city": "Delft"}, T2, "werkportal")
    satellite.append_if_changed(globex, {"name": "Globex", "city": "Leiden"}, T2, "werkportal")
    satellite.reconcile_current_flags()
    return acme, globex


@pytest.mark.unit
class TestPitProjector:
    """Tests for PitProjector"""

    def test_rebuild_default_grid(self, memory_backend, history):
        acme, globex = history
        result = PitProjector(memory_backend, "company", "company_details").rebuild()

        assert result.snapshot_dates == [date(2024, 3, 1), date(2024, 3, 3)]
        assert result.rows_written == 4
        assert result.unresolved == 1

        rows = PitProjector(memory_backend, "company", "company_details").fetch(date(2024, 3, 1))
        by_key = {r.entity_key: r for r in rows}
        assert by_key[acme].applicable_load_time == T1
        assert not by_key[globex].resolved

    def test_rebuild_reproducible(self, memory_backend, history):
        projector = PitProjector(memory_backend, "company", "company_details")
        first = projector.rebuild()
        first_rows = projector.fetch()
        second = projector.rebuild()

        assert first.checksum == second.checksum
        assert first_rows == projector.fetch()

    def test_explicit_grid(self, memory_backend, history):
        grid = [date(2024, 3, 2), date(2024, 3, 2), date(2024, 3, 10)]
        result = PitProjector(memory_backend, "company", "company_details").rebuild(grid)
        assert result.snapshot_dates == [date(2024, 3, 2), date(2024, 3, 10)]
        assert result.rows_written == 4

    def test_omit_policy(self, memory_backend, history):
        projector = PitProjector(memory_backend, "company", "company_details", VaultSettings(pit_unresolved="omit"))
        result = projector.rebuild()
        assert result.rows_written == 3
        assert result.unresolved == 0

    def test_sentinels_project_to_themselves(self, memory_backend, vault_config, history):
        SentinelManager(memory_backend, vault_config).ensure_sentinels("company")
        result = PitProjector(memory_backend, "company", "company_details").rebuild()
        # Two ghost hub keys join the grid and resolve to their own ghost versions
        assert result.rows_written == 8
        assert result.unresolved == 1
        assert date(1900, 1, 1) not in result.snapshot_dates

    def test_rebuild_replaces_previous_projection(self, memory_backend, history):
        projector = PitProjector(memory_backend, "company", "company_details")
        projector.rebuild([date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)])
        projector.rebuild([date(2024, 3, 3)])
        assert len(projector.fetch()) == 2

    def test_empty_history(self, memory_backend):
        result = PitProjector(memory_backend, "company", "company_details").rebuild()
        assert result.rows_written == 0
        assert result.snapshot_dates == []
