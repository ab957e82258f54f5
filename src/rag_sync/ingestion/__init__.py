"""
Ingestion — pluggable ingestors, chunking, and the scheduled pipeline
that keeps the embedding store in sync with its content sources.

Public surface
--------------
- :class:`DataIngestionPipeline` — runs every registered ingestor on a schedule.
- :class:`Ingestor`, :class:`IngestorOptions`, :class:`IngestorRegistry` — plugin contract.
- :class:`ScheduledTaskRunner`, :class:`TaskSchedule` — periodic execution.
- :func:`chunk_documents` — overlapping character chunks with a ``chunk`` index.
"""

from rag_sync.ingestion.chunker import chunk_documents, split_text
from rag_sync.ingestion.ingestor import (
    DuplicateIngestorError,
    Ingestor,
    IngestorOptions,
    IngestorRegistry,
)
from rag_sync.ingestion.pipeline import DataIngestionPipeline, IngestionReport, IngestorRunStats
from rag_sync.ingestion.scheduler import ScheduledTaskRunner, TaskSchedule

__all__ = [
    "DataIngestionPipeline",
    "DuplicateIngestorError",
    "IngestionReport",
    "Ingestor",
    "IngestorOptions",
    "IngestorRegistry",
    "IngestorRunStats",
    "ScheduledTaskRunner",
    "TaskSchedule",
    "chunk_documents",
    "split_text",
]
