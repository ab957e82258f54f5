"""In-process implementation of the embedding store abstraction.

Rows live in a dict keyed by row id. Ranking is computed in Python with the
same formula the pgvector backend evaluates in SQL, which makes this backend
suitable for development and for exercising the store contract in tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from rag_sync.store.base import EmbeddingStore
from rag_sync.store.models import EmbeddingRow, MetadataFilter, ScoredRow
from rag_sync.store.ranking import combined_score, cosine_distance


def matches_filter(metadata: dict[str, Any], row_filter: MetadataFilter) -> bool:
    """JSON containment: every filter key is present in *metadata* with an equal value."""
    return all(key in metadata and metadata[key] == value for key, value in row_filter.items())


class InMemoryEmbeddingStore(EmbeddingStore):
    """Embedding store kept in memory; transactions roll back on error."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._rows: dict[UUID, EmbeddingRow] = {}
        self._lock = asyncio.Lock()

    @property
    def rows(self) -> list[EmbeddingRow]:
        """Snapshot of every stored row."""
        return list(self._rows.values())

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[dict[UUID, EmbeddingRow]]:
        async with self._lock:
            snapshot = dict(self._rows)
            try:
                yield self._rows
            except BaseException:
                self._rows.clear()
                self._rows.update(snapshot)
                raise

    async def _find_by_documents(
        self, tx: dict[UUID, EmbeddingRow], keys: list[tuple[str, str]]
    ) -> list[EmbeddingRow]:
        wanted = set(keys)
        return [
            row
            for row in tx.values()
            if (row.metadata.get("source"), row.metadata.get("id")) in wanted
        ]

    async def _find_by_filter(
        self, tx: dict[UUID, EmbeddingRow], row_filter: MetadataFilter
    ) -> list[EmbeddingRow]:
        return [row for row in tx.values() if matches_filter(row.metadata, row_filter)]

    async def _delete_ids(self, tx: dict[UUID, EmbeddingRow], ids: list[UUID]) -> None:
        for row_id in ids:
            tx.pop(row_id, None)

    async def _delete_matching(self, tx: dict[UUID, EmbeddingRow], row_filter: MetadataFilter) -> int:
        doomed = [row.id for row in await self._find_by_filter(tx, row_filter)]
        await self._delete_ids(tx, doomed)
        return len(doomed)

    async def _delete_unreported(
        self, tx: dict[UUID, EmbeddingRow], source: str, keep_ids: list[str]
    ) -> int:
        keep = set(keep_ids)
        doomed = [
            row.id
            for row in tx.values()
            if row.metadata.get("source") == source and row.metadata.get("id") not in keep
        ]
        await self._delete_ids(tx, doomed)
        return len(doomed)

    async def _insert(self, tx: dict[UUID, EmbeddingRow], rows: list[EmbeddingRow]) -> None:
        for row in rows:
            if row.id in tx:
                raise ValueError(f"duplicate key value violates unique constraint: id={row.id}")
        for row in rows:
            tx[row.id] = row

    async def _search(
        self,
        tx: dict[UUID, EmbeddingRow],
        vector: list[float],
        row_filter: MetadataFilter,
        amount: int,
        now: datetime,
    ) -> list[ScoredRow]:
        scored: list[ScoredRow] = []
        for row in tx.values():
            if not matches_filter(row.metadata, row_filter):
                continue
            distance = cosine_distance(row.vector, vector)
            score = combined_score(distance, row.last_updated, now, self.ranking)
            scored.append(ScoredRow(row=row, distance=distance, score=score))
        scored.sort(key=lambda hit: hit.score)
        return scored[:amount]

    async def _count(self, tx: dict[UUID, EmbeddingRow], row_filter: MetadataFilter) -> int:
        return len(await self._find_by_filter(tx, row_filter))
