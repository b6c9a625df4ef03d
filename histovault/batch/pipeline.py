"""
Spark load pipeline orchestration.

Coordinates the flow: read snapshot files -> stage -> load cycle
"""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field
from pyspark.sql import SparkSession

from histovault.core.models import CycleResult, SourceBatch
from histovault.core.schema import VaultConfig
from histovault.observability.logger import get_logger
from histovault.utils.timestamps import utc_now
from histovault.utils.validation import validate_file_path, validate_source_tag
from histovault.vault.load_cycle import LoadCycle
from histovault.warehouse.backend import VaultBackend

from .readers import FileReader
from .staging import dataframe_to_batch

logger = get_logger(__name__)


class SourceFileSpec(BaseModel):
    """
    One snapshot file of a load cycle.

    Attributes:
        entity: Source name (entity or relationship source) the rows belong to
        path: File path
        file_format: csv, json or parquet
        source_tag: Source tag stamped on every row
        load_time_column: Column holding per-row load times (default: cycle load time)
        options: Reader options
    """

    entity: str = Field(..., min_length=1)
    path: str
    file_format: Literal["csv", "json", "parquet"] = "csv"
    source_tag: str
    load_time_column: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "entity": "company",
                "path": "data/company_20240301.csv",
                "file_format": "csv",
                "source_tag": "werkportal",
                "options": {"delimiter": ";"},
            }
        }


class SparkLoadPipeline:
    """
    Reads snapshot files with Spark and historizes them in one load cycle.

    Flow:
    1. Read each file (CSV/JSON/Parquet)
    2. Stage each DataFrame into a SourceBatch
    3. Run the load cycle over all batches
    """

    def __init__(self, spark: SparkSession, backend: VaultBackend, config: VaultConfig):
        """
        Initialize the pipeline.

        Args:
            spark: Active Spark session
            backend: Vault storage backend
            config: Vault definition
        """
        self.spark = spark
        self.file_reader = FileReader(spark)
        self.load_cycle = LoadCycle(backend, config)

    def stage(self, spec: SourceFileSpec, load_time: datetime) -> SourceBatch:
        """Read and stage one snapshot file."""
        path = validate_file_path(spec.path)
        source_tag = validate_source_tag(spec.source_tag)
        logger.info(f"Reading {spec.file_format} file {path} for {spec.entity}")
        df = self.file_reader.read(path, file_format=spec.file_format, **spec.options)
        return dataframe_to_batch(
            df,
            spec.entity,
            source_tag=source_tag,
            load_time=None if spec.load_time_column else load_time,
            load_time_column=spec.load_time_column,
        )

    def run(
        self,
        specs: list[SourceFileSpec],
        load_time: datetime | None = None,
        ensure_sentinels: bool = False,
        rebuild_pit: bool = False,
        snapshot_dates: list[date] | None = None,
    ) -> CycleResult:
        """
        Historize a set of snapshot files as one load cycle.

        Args:
            specs: Snapshot files
            load_time: Load time of rows without a load time column (default: now)
            ensure_sentinels: Insert ghost rows before appending
            rebuild_pit: Rebuild PIT projections afterwards
            snapshot_dates: PIT grid for rebuild_pit

        Returns:
            CycleResult
        """
        load_time = load_time or utc_now()
        batches = [self.stage(spec, load_time) for spec in specs]
        return self.load_cycle.run(
            batches,
            ensure_sentinels=ensure_sentinels,
            rebuild_pit=rebuild_pit,
            snapshot_dates=snapshot_dates,
        )
