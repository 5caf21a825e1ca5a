"""
Source readers for the operational records.
"""

from .postgres_reader import PostgresSourceReader
from .source_reader import SOURCE_MODELS, InMemorySourceReader, SourceReader

__all__ = [
    "SourceReader",
    "InMemorySourceReader",
    "PostgresSourceReader",
    "SOURCE_MODELS",
]
