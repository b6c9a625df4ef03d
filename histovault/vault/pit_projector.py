"""
Point-in-time projector: materializes, per satellite, the applicable
version of every entity at every snapshot date.
"""

from datetime import date
from typing import Iterable

from histovault.core.history import compute_pit_rows, default_snapshot_dates, pit_checksum
from histovault.core.models import PitBuildResult, PitRow
from histovault.core.schema import VaultSettings
from histovault.observability.logger import get_logger, log_operation
from histovault.observability.metrics import pit_rows, set_gauge
from histovault.warehouse.backend import VaultBackend

logger = get_logger(__name__)


class PitProjector:
    """
    Rebuildable PIT projection of one satellite.

    The projection is derived data: rebuild() drops and regenerates it from
    the entity and attribute history stores, and two rebuilds over the same
    history produce identical rows and checksum.

    Args:
        backend: Storage backend
        entity: Entity name (hub providing the keys)
        satellite: Satellite name
        settings: Engine settings (pit_unresolved policy)
    """

    def __init__(self, backend: VaultBackend, entity: str, satellite: str, settings: VaultSettings | None = None):
        self.backend = backend
        self.entity = entity
        self.satellite = satellite
        self.settings = settings or VaultSettings()

    def compute(self, snapshot_dates: Iterable[date] | None = None) -> tuple[list[PitRow], list[date]]:
        """Compute PIT rows without storing them."""
        entity_keys = [record.entity_key for record in self.backend.fetch_entities(self.entity)]
        versions = self.backend.fetch_versions(self.satellite)
        if snapshot_dates is None:
            grid = default_snapshot_dates(versions)
        else:
            grid = sorted(set(snapshot_dates))
        rows = compute_pit_rows(entity_keys, versions, grid, self.settings.pit_unresolved)
        return rows, grid

    def rebuild(self, snapshot_dates: Iterable[date] | None = None) -> PitBuildResult:
        """
        Replace the PIT table of the satellite.

        Args:
            snapshot_dates: Snapshot grid (default: distinct load dates of the
                satellite's non-sentinel versions)

        Returns:
            PitBuildResult with row count, grid and checksum
        """
        with log_operation("Rebuild PIT", logger=logger, satellite=self.satellite):
            rows, grid = self.compute(snapshot_dates)
            written = self.backend.replace_pit(self.satellite, rows)

        unresolved = sum(1 for row in rows if not row.resolved)
        set_gauge(pit_rows, written, satellite=self.satellite)
        return PitBuildResult(
            satellite=self.satellite,
            rows_written=written,
            unresolved=unresolved,
            snapshot_dates=grid,
            checksum=pit_checksum(rows),
        )

    def fetch(self, snapshot_date: date | None = None) -> list[PitRow]:
        return self.backend.fetch_pit(self.satellite, snapshot_date)
