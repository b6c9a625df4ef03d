"""
Spark batch input: snapshot file readers, staging and the load pipeline.
"""

from .pipeline import SourceFileSpec, SparkLoadPipeline
from .readers import CSVReader, FileReader
from .staging import dataframe_to_batch

__all__ = [
    "SparkLoadPipeline",
    "SourceFileSpec",
    "CSVReader",
    "FileReader",
    "dataframe_to_batch",
]
