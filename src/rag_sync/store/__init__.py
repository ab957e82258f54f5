"""
Store — versioned embedding storage with hybrid (similarity + recency) search.

Public surface
--------------
- :class:`EmbeddingStore` — abstract store holding the upsert / delete / search algorithm.
- :class:`InMemoryEmbeddingStore` — in-process backend (development, tests).
- :class:`PgVectorStore` — PostgreSQL + pgvector backend.
- :class:`EmbeddingDocument`, :class:`EmbeddingRow` — data models.
- :class:`RankingConfig` — hybrid ranking weights.
- :func:`create_embedding_store` — backend factory driven by settings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rag_sync.store.base import EmbeddingsNotConnectedError, EmbeddingStore
from rag_sync.store.memory_store import InMemoryEmbeddingStore
from rag_sync.store.models import EmbeddingDocument, EmbeddingRow, MetadataFilter
from rag_sync.store.ranking import RankingConfig

if TYPE_CHECKING:
    from rag_sync.config import Settings

__all__ = [
    "EmbeddingDocument",
    "EmbeddingRow",
    "EmbeddingStore",
    "EmbeddingsNotConnectedError",
    "InMemoryEmbeddingStore",
    "MetadataFilter",
    "PgVectorStore",
    "RankingConfig",
    "create_embedding_store",
]


def create_embedding_store(config: Settings | None = None) -> EmbeddingStore:
    """Build the store selected by ``config.storage_backend``."""
    if config is None:
        from rag_sync.config import settings as config

    if config.storage_backend == "memory":
        return InMemoryEmbeddingStore(
            amount=config.store_amount,
            chunk_size=config.store_chunk_size,
            embed_batch_size=config.embed_batch_size,
            ranking=RankingConfig.from_settings(config),
        )
    if config.storage_backend == "pgvector":
        from rag_sync.store.pgvector_store import PgVectorStore

        return PgVectorStore.from_settings(config)
    raise ValueError(f"Unsupported storage_backend: {config.storage_backend!r}")


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import PgVectorStore to avoid pulling in SQLAlchemy/pgvector at import time."""
    if name == "PgVectorStore":
        from rag_sync.store.pgvector_store import PgVectorStore

        return PgVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
