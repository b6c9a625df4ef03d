"""
DataFrame staging: turns a Spark DataFrame into a SourceBatch.

Rows are collected to the driver; one snapshot of one entity type is
expected to fit in driver memory.
"""

from datetime import datetime

from pyspark.sql import DataFrame

from histovault.core.models import SourceBatch
from histovault.observability.logger import get_logger

from .readers.csv_reader import CORRUPT_RECORD_COLUMN

logger = get_logger(__name__)


def dataframe_to_batch(
    df: DataFrame,
    entity: str,
    source_tag: str,
    load_time: datetime | None = None,
    load_time_column: str | None = None,
) -> SourceBatch:
    """
    Collect a DataFrame into a SourceBatch.

    Rows Spark could not parse (PERMISSIVE mode) are dropped with a warning;
    they carry no usable business key.

    Args:
        df: Snapshot DataFrame
        entity: Source name of the batch
        source_tag: Source tag of every row
        load_time: Load time of every row
        load_time_column: Column holding a per-row load time instead

    Returns:
        SourceBatch
    """
    if CORRUPT_RECORD_COLUMN in df.columns:
        # Spark refuses queries referencing only the corrupt record column of an uncached scan
        df = df.cache()
        corrupt = df.filter(df[CORRUPT_RECORD_COLUMN].isNotNull()).count()
        if corrupt:
            logger.warning(f"Dropping {corrupt} unparseable rows from {entity}")
        df = df.filter(df[CORRUPT_RECORD_COLUMN].isNull()).drop(CORRUPT_RECORD_COLUMN)

    records = [row.asDict(recursive=True) for row in df.collect()]
    logger.info(f"Staged {len(records)} rows for {entity}")
    return SourceBatch.from_records(
        entity,
        records,
        source_tag=source_tag,
        load_time=load_time,
        load_time_column=load_time_column,
    )
