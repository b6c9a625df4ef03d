"""
Load cycle input: one row set per source entity type.
"""

from datetime import datetime
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, Field, field_validator

from histovault.utils.validation import validate_source_tag

from .keys import check_utc


class SourceRow(BaseModel):
    """
    One raw source row: business key and attribute values plus provenance.
    """

    values: dict[str, Any]
    source_tag: str
    load_time: datetime

    @field_validator("source_tag")
    @classmethod
    def check_source_tag(cls, v):
        return validate_source_tag(v)

    @field_validator("load_time")
    @classmethod
    def check_load_time(cls, v):
        return check_utc(v)


class SourceBatch(BaseModel):
    """
    Row set of one source entity type for one load cycle.

    Attributes:
        entity: Source name; matches an entity definition, a relationship
            source, or both
        rows: Source rows
    """

    entity: str = Field(..., min_length=1)
    rows: list[SourceRow] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    @classmethod
    def from_records(
        cls,
        entity: str,
        records: Iterable[Mapping[str, Any]],
        source_tag: str,
        load_time: datetime | None = None,
        load_time_column: str | None = None,
    ) -> "SourceBatch":
        """
        Build a batch from plain dictionaries.

        Args:
            entity: Source name
            records: Row dictionaries
            source_tag: Source tag for every row
            load_time: Load time for every row
            load_time_column: Column holding a per-row load time instead

        Returns:
            SourceBatch
        """
        if load_time is None and load_time_column is None:
            raise ValueError("either load_time or load_time_column is required")

        rows = []
        for record in records:
            values = dict(record)
            row_time = load_time
            if load_time_column is not None:
                row_time = values.pop(load_time_column, None)
                if row_time is None:
                    raise ValueError(f"row is missing load time column '{load_time_column}'")
            rows.append(SourceRow(values=values, source_tag=source_tag, load_time=row_time))
        return cls(entity=entity, rows=rows)
