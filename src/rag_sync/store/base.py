"""Abstract embedding store: versioned upsert, deletion and hybrid-ranked search.

The incremental-reindex algorithm lives here once. Backends (pgvector,
in-memory, …) subclass :class:`EmbeddingStore` and implement the storage
primitives; each primitive receives the transaction handle yielded by
:meth:`EmbeddingStore._transaction`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from rag_sync.store.models import (
    EmbeddingDocument,
    EmbeddingRow,
    IdentityKey,
    MetadataFilter,
    ScoredRow,
    content_hash,
    utcnow,
)
from rag_sync.store.ranking import RankingConfig

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


class EmbeddingsNotConnectedError(RuntimeError):
    """Raised when the store is used before an embeddings provider is bound."""

    def __init__(self) -> None:
        super().__init__("No Embeddings configured for the vector store.")


def _dedupe_by_identity(documents: Iterable[EmbeddingDocument]) -> dict[IdentityKey, EmbeddingDocument]:
    # Last occurrence of an identity key in a batch wins.
    unique: dict[IdentityKey, EmbeddingDocument] = {}
    for doc in documents:
        unique[doc.identity()] = doc
    return unique


class EmbeddingStore(ABC):
    """Backend-agnostic embedding store.

    Parameters
    ----------
    amount:
        Default number of documents returned by :meth:`similarity_search`.
    chunk_size:
        Maximum number of rows per bulk insert statement.
    ranking:
        Weights and half-life of the hybrid ranking.
    embed_batch_size:
        Maximum number of texts sent to the embeddings provider per call.
    """

    def __init__(
        self,
        *,
        amount: int = 4,
        chunk_size: int = 500,
        ranking: RankingConfig | None = None,
        embed_batch_size: int = 64,
    ) -> None:
        if amount < 1:
            raise ValueError("amount must be >= 1")
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.amount = amount
        self.chunk_size = chunk_size
        self.ranking = ranking or RankingConfig()
        self.embed_batch_size = embed_batch_size
        self._embeddings: Embeddings | None = None

    # -- embeddings -----------------------------------------------------------

    def connect_embeddings(self, embeddings: Embeddings) -> None:
        """Bind the provider used for both indexing and querying."""
        if self._embeddings is not None:
            logger.warning("Embeddings already connected, overwriting.")
        self._embeddings = embeddings

    def _require_embeddings(self) -> Embeddings:
        if self._embeddings is None:
            raise EmbeddingsNotConnectedError()
        return self._embeddings

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        embeddings = self._require_embeddings()
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.embed_batch_size):
            batch = texts[start : start + self.embed_batch_size]
            vectors.extend(await embeddings.aembed_documents(batch))
        if len(vectors) != len(texts):
            raise RuntimeError(
                f"Embeddings provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    # -- public API -----------------------------------------------------------

    async def add_documents(self, documents: Sequence[EmbeddingDocument]) -> None:
        """Embed and insert new or changed documents.

        Documents whose identity key is already stored with the same content
        hash are skipped without calling the embeddings provider. Changed
        documents have their old row deleted before the replacement is
        inserted, within a single transaction.

        Raises
        ------
        EmbeddingsNotConnectedError
            When no embeddings provider is connected.
        """
        if not documents:
            return
        self._require_embeddings()

        incoming = _dedupe_by_identity(documents)
        keys = sorted({(source, doc_id) for source, doc_id, _ in incoming})

        async with self._transaction() as tx:
            existing = {row.identity(): row for row in await self._find_by_documents(tx, keys)}

        new_docs: list[EmbeddingDocument] = []
        changed_docs: list[EmbeddingDocument] = []
        stale_ids: list[UUID] = []
        for key, doc in incoming.items():
            row = existing.get(key)
            if row is None:
                new_docs.append(doc)
            elif row.hash != content_hash(doc.content):
                changed_docs.append(doc)
                stale_ids.append(row.id)

        unchanged = len(incoming) - len(new_docs) - len(changed_docs)
        logger.info(
            "Adding documents: %d new, %d updated, %d unchanged",
            len(new_docs),
            len(changed_docs),
            unchanged,
        )
        to_embed = new_docs + changed_docs
        if not to_embed:
            return

        vectors = await self._embed([doc.content for doc in to_embed])
        logger.info("Received %d vectors from embeddings creation.", len(vectors))
        now = utcnow()
        rows = [EmbeddingRow.from_document(doc, vec, now=now) for doc, vec in zip(to_embed, vectors)]

        async with self._transaction() as tx:
            if stale_ids:
                await self._delete_ids(tx, stale_ids)
            await self._insert_in_chunks(tx, rows)

    async def replace_documents(
        self,
        documents: Sequence[EmbeddingDocument],
        *,
        filters: Sequence[MetadataFilter],
    ) -> None:
        """Atomically delete every row matching *filters* and insert *documents*.

        Content already stored under the same identity key with the same hash
        is carried over (row id, vector and ``last_updated`` are reused), so
        only new or changed content reaches the embeddings provider.
        """
        if not filters and not documents:
            return
        incoming = _dedupe_by_identity(documents)
        if incoming:
            self._require_embeddings()

        async with self._transaction() as tx:
            current: dict[IdentityKey, EmbeddingRow] = {}
            for row_filter in filters:
                for row in await self._find_by_filter(tx, row_filter):
                    current[row.identity()] = row

        carried: list[EmbeddingRow] = []
        to_embed: list[EmbeddingDocument] = []
        for key, doc in incoming.items():
            row = current.get(key)
            if row is not None and row.hash == content_hash(doc.content):
                carried.append(row.model_copy(update={"metadata": dict(doc.metadata)}))
            else:
                to_embed.append(doc)

        rows = list(carried)
        if to_embed:
            vectors = await self._embed([doc.content for doc in to_embed])
            now = utcnow()
            rows.extend(EmbeddingRow.from_document(d, v, now=now) for d, v in zip(to_embed, vectors))

        logger.info(
            "Replacing %d filter(s): %d rows removed, %d embedded, %d carried over",
            len(filters),
            len(current),
            len(to_embed),
            len(carried),
        )
        async with self._transaction() as tx:
            for row_filter in filters:
                await self._delete_matching(tx, row_filter)
            await self._insert_in_chunks(tx, rows)

    async def delete_documents(
        self,
        *,
        ids: Sequence[UUID | str] | None = None,
        filter: MetadataFilter | None = None,  # noqa: A002
    ) -> None:
        """Delete rows by explicit row ids **or** by metadata containment.

        A *filter* of ``{"source": "x"}`` removes every row whose metadata
        contains ``source == "x"``, regardless of its other fields.
        """
        if ids is None and filter is None:
            raise ValueError("You must specify either ids or a filter when deleting documents.")
        if ids is not None and filter is not None:
            raise ValueError("You cannot specify both ids and a filter when deleting documents.")

        async with self._transaction() as tx:
            if ids is not None:
                if ids:
                    await self._delete_ids(tx, [UUID(str(i)) for i in ids])
            else:
                await self._delete_matching(tx, filter or {})

    async def prune_source(self, source: str, keep_ids: Iterable[str]) -> int:
        """Delete rows of *source* whose ``metadata.id`` is not in *keep_ids*."""
        keep = sorted(set(keep_ids))
        async with self._transaction() as tx:
            removed = await self._delete_unreported(tx, source, keep)
        if removed:
            logger.info("Pruned %d rows no longer reported by source %r", removed, source)
        return removed

    async def similarity_search(
        self,
        query: str,
        filter: MetadataFilter | None = None,  # noqa: A002
        amount: int | None = None,
    ) -> list[EmbeddingDocument]:
        """Return up to *amount* documents ranked by similarity and recency.

        Each returned document carries ``ageInDays`` and ``lastUpdated`` in
        its metadata.

        Raises
        ------
        ValueError
            When *amount* is given and is smaller than 1.
        """
        limit = self.amount if amount is None else amount
        if limit < 1:
            raise ValueError("amount must be >= 1")
        vector = await self._require_embeddings().aembed_query(query)
        now = utcnow()
        async with self._transaction() as tx:
            hits = await self._search(tx, vector, filter or {}, limit, now)
        return [hit.to_document(now) for hit in hits]

    async def count(self, filter: MetadataFilter | None = None) -> int:  # noqa: A002
        async with self._transaction() as tx:
            return await self._count(tx, filter or {})

    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        return True

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""

    # -- internals ------------------------------------------------------------

    async def _insert_in_chunks(self, tx: Any, rows: list[EmbeddingRow]) -> None:
        for start in range(0, len(rows), self.chunk_size):
            await self._insert(tx, rows[start : start + self.chunk_size])

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def _transaction(self) -> AbstractAsyncContextManager[Any]:
        """Return a context manager yielding a handle; commit on exit, roll back on error."""
        ...

    @abstractmethod
    async def _find_by_documents(self, tx: Any, keys: list[tuple[str, str]]) -> list[EmbeddingRow]:
        """Return every row whose ``(metadata.source, metadata.id)`` is in *keys*."""
        ...

    @abstractmethod
    async def _find_by_filter(self, tx: Any, row_filter: MetadataFilter) -> list[EmbeddingRow]:
        ...

    @abstractmethod
    async def _delete_ids(self, tx: Any, ids: list[UUID]) -> None:
        ...

    @abstractmethod
    async def _delete_matching(self, tx: Any, row_filter: MetadataFilter) -> int:
        ...

    @abstractmethod
    async def _delete_unreported(self, tx: Any, source: str, keep_ids: list[str]) -> int:
        ...

    @abstractmethod
    async def _insert(self, tx: Any, rows: list[EmbeddingRow]) -> None:
        ...

    @abstractmethod
    async def _search(
        self,
        tx: Any,
        vector: list[float],
        row_filter: MetadataFilter,
        amount: int,
        now: datetime,
    ) -> list[ScoredRow]:
        """Return up to *amount* rows containing *row_filter*, by ascending combined score."""
        ...

    @abstractmethod
    async def _count(self, tx: Any, row_filter: MetadataFilter) -> int:
        ...
