"""Wiring of store, embeddings, ingestors and pipeline from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from langchain_core.embeddings import Embeddings

from rag_sync.config import Settings, settings
from rag_sync.ingestion.ingestor import Ingestor, IngestorRegistry
from rag_sync.ingestion.pipeline import DataIngestionPipeline
from rag_sync.store import EmbeddingStore, create_embedding_store

logger = logging.getLogger(__name__)

DIRECTORY_INGESTOR_ID = "directory"


@dataclass
class RagSyncService:
    store: EmbeddingStore
    registry: IngestorRegistry
    pipeline: DataIngestionPipeline

    async def aclose(self) -> None:
        await self.pipeline.stop()
        await self.store.close()


def default_ingestors(config: Settings) -> list[Ingestor]:
    """Ingestors enabled purely through settings."""
    if not config.ingestion_directory:
        return []
    from rag_sync.ingestion.loader import DirectoryIngestor

    return [DirectoryIngestor(DIRECTORY_INGESTOR_ID, config.ingestion_directory, glob=config.ingestion_glob)]


def build_service(
    config: Settings = settings,
    *,
    ingestors: list[Ingestor] | None = None,
    embeddings: Embeddings | None = None,
    load_plugins: bool = True,
) -> RagSyncService:
    """Assemble a ready-to-start service.

    Parameters
    ----------
    config:
        Settings to build from (defaults to the global ``settings``).
    ingestors:
        Extra ingestors registered after the settings-driven ones.
    embeddings:
        Embedding provider; defaults to the configured HuggingFace model.
    load_plugins:
        Also register ingestors published under the ``rag_sync.ingestors``
        entry-point group.
    """
    store = create_embedding_store(config)
    if embeddings is None:
        from rag_sync.ingestion.embedder import get_embedding_function

        embeddings = get_embedding_function(config.embedding_model)
    store.connect_embeddings(embeddings)

    registry = IngestorRegistry(default_ingestors(config) + list(ingestors or []))
    if load_plugins:
        registry.load_entry_points()
    logger.info("Registered ingestors: %s", registry.ids or "none")

    pipeline = DataIngestionPipeline.from_settings(store, registry, config)
    return RagSyncService(store=store, registry=registry, pipeline=pipeline)
