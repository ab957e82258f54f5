"""Scheduled data-ingestion pipeline.

Every run walks the registered ingestors in registration order::

    ingestor.ingest() → save_documents_batch(docs)
        → clear each document's stored chunks   (filter {source, id})
        → chunk                                 (metadata + "chunk")
        → store.replace_documents               (one transaction per batch)

A failing ingestor is logged and recorded in the :class:`IngestionReport`;
the remaining ingestors still run.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field

from rag_sync.config import Settings
from rag_sync.ingestion.chunker import build_splitter, chunk_documents
from rag_sync.ingestion.ingestor import Ingestor, IngestorOptions, IngestorRegistry
from rag_sync.ingestion.scheduler import ScheduledTaskRunner, TaskSchedule
from rag_sync.store.base import EmbeddingStore
from rag_sync.store.models import EmbeddingDocument, MetadataFilter

logger = logging.getLogger(__name__)

TASK_ID = "rag-sync.data-ingestion:start"


class IngestorRunStats(BaseModel):
    """Outcome of one ingestor within a pipeline run."""

    ingestor_id: str
    batches: int = 0
    documents: int = 0
    chunks: int = 0
    pruned: int = 0
    error: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class IngestionReport(BaseModel):
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    ingestors: list[IngestorRunStats] = Field(default_factory=list)

    @property
    def failed(self) -> list[str]:
        return [s.ingestor_id for s in self.ingestors if not s.ok]


def schedule_from_settings(config: Settings) -> TaskSchedule:
    return TaskSchedule(
        frequency=timedelta(hours=config.ingestion_frequency_hours),
        timeout=timedelta(hours=config.ingestion_timeout_hours),
        initial_delay=timedelta(seconds=config.ingestion_initial_delay_seconds),
    )


class DataIngestionPipeline:
    """Keeps the embedding store in sync with every registered ingestor.

    Parameters
    ----------
    store:
        Destination embedding store (embeddings must be connected).
    registry:
        Ingestors to run, in registration order.
    runner:
        Scheduler used by :meth:`start`; defaults to every 24 h with a 3 h timeout.
    chunk_size / chunk_overlap:
        Chunking parameters applied to every ingested document.
    prune_unreported:
        After an ingestor finishes cleanly, delete stored documents of its
        source that it did not report during the run.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        registry: IngestorRegistry,
        *,
        runner: ScheduledTaskRunner | None = None,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
        prune_unreported: bool = False,
    ) -> None:
        build_splitter(chunk_size, chunk_overlap)  # validate early
        self.store = store
        self.registry = registry
        self.runner = runner or ScheduledTaskRunner()
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.prune_unreported = prune_unreported

    @classmethod
    def from_settings(
        cls, store: EmbeddingStore, registry: IngestorRegistry, config: Settings
    ) -> DataIngestionPipeline:
        return cls(
            store,
            registry,
            runner=ScheduledTaskRunner(schedule_from_settings(config)),
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            prune_unreported=config.ingestion_prune_unreported,
        )

    # -- control surface ------------------------------------------------------

    def start(self) -> None:
        """Arm the scheduled ingestion task."""
        self.runner.start(TASK_ID, self.run)

    async def stop(self) -> None:
        await self.runner.stop()

    async def run(self) -> IngestionReport:
        """Run every registered ingestor once."""
        report = IngestionReport()
        logger.info("Starting data ingestion...")

        if len(self.registry) == 0:
            logger.warning("No ingestors available for data ingestion.")
            report.finished_at = datetime.now(timezone.utc)
            return report

        logger.info("Ingestors available: %s", ", ".join(self.registry.ids))
        for ingestor in self.registry:
            report.ingestors.append(await self._run_ingestor(ingestor))

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Data ingestion completed: %d ingestor(s), %d failed",
            len(report.ingestors),
            len(report.failed),
        )
        return report

    # -- internals ------------------------------------------------------------

    async def _run_ingestor(self, ingestor: Ingestor) -> IngestorRunStats:
        stats = IngestorRunStats(ingestor_id=ingestor.id)
        reported: set[str] = set()
        t0 = time.monotonic()
        logger.info("Running ingestor: %s", ingestor.id)

        async def save_documents_batch(documents: list[EmbeddingDocument]) -> None:
            await self._save_batch(ingestor.id, documents, stats)
            reported.update(doc.document_id for doc in documents)

        try:
            documents = await ingestor.ingest(IngestorOptions(save_documents_batch=save_documents_batch))
            if documents:
                await save_documents_batch(list(documents))
        except Exception as exc:
            stats.error = f"{type(exc).__name__}: {exc}"
            logger.exception("Ingestor %s failed", ingestor.id)
        else:
            if self.prune_unreported:
                stats.pruned = await self.store.prune_source(ingestor.id, reported)

        stats.elapsed_seconds = round(time.monotonic() - t0, 3)
        logger.info(
            "Finished processing ingestor: %s (%d documents, %d chunks in %.1fs)",
            ingestor.id,
            stats.documents,
            stats.chunks,
            stats.elapsed_seconds,
        )
        return stats

    @staticmethod
    def _owned_by(ingestor_id: str, doc: EmbeddingDocument) -> EmbeddingDocument:
        # Stored rows are keyed by the ingestor id so the next run's delete filter matches them.
        if doc.source == ingestor_id:
            return doc
        logger.warning(
            "Document %r from ingestor %s declares source %r, storing it under %r",
            doc.document_id,
            ingestor_id,
            doc.source,
            ingestor_id,
        )
        return EmbeddingDocument(metadata={**doc.metadata, "source": ingestor_id}, content=doc.content)

    async def _save_batch(
        self,
        ingestor_id: str,
        documents: list[EmbeddingDocument],
        stats: IngestorRunStats,
    ) -> None:
        logger.info("Ingested documents for %s: %d", ingestor_id, len(documents))
        documents = [self._owned_by(ingestor_id, doc) for doc in documents]
        filters: list[MetadataFilter] = []
        seen: set[str] = set()
        for doc in documents:
            if doc.document_id not in seen:
                seen.add(doc.document_id)
                filters.append({"source": ingestor_id, "id": doc.document_id})

        chunks = chunk_documents(documents, self.chunk_size, self.chunk_overlap)
        await self.store.replace_documents(chunks, filters=filters)

        stats.batches += 1
        stats.documents += len(documents)
        stats.chunks += len(chunks)
        logger.info("Added %d chunks to vector store for %s", len(chunks), ingestor_id)
