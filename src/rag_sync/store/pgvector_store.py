"""PostgreSQL + pgvector implementation of the embedding store abstraction."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    DateTime,
    Delete,
    Float,
    MetaData,
    Select,
    Table,
    delete,
    extract,
    func,
    insert,
    literal,
    select,
    text,
    tuple_,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from rag_sync.config import Settings, settings
from rag_sync.store.base import EmbeddingStore
from rag_sync.store.models import EmbeddingRow, MetadataFilter, ScoredRow
from rag_sync.store.ranking import LN2, SECONDS_PER_DAY, RankingConfig
from rag_sync.store.schema import build_embeddings_table, create_schema

logger = logging.getLogger(__name__)

# exp() of anything below this underflows float8 and PostgreSQL raises.
_MIN_EXPONENT = -700.0


# -- statement builders --------------------------------------------------------


def select_by_documents(table: Table, keys: list[tuple[str, str]]) -> Select:
    meta = table.c["metadata"]
    return select(table).where(tuple_(meta["source"].astext, meta["id"].astext).in_(keys))


def select_by_filter(table: Table, row_filter: MetadataFilter) -> Select:
    return select(table).where(table.c["metadata"].contains(row_filter))


def delete_by_ids(table: Table, ids: list[UUID]) -> Delete:
    return delete(table).where(table.c.id.in_(ids))


def delete_by_filter(table: Table, row_filter: MetadataFilter) -> Delete:
    return delete(table).where(table.c["metadata"].contains(row_filter))


def delete_unreported(table: Table, source: str, keep_ids: list[str]) -> Delete:
    meta = table.c["metadata"]
    return delete(table).where(meta.contains({"source": source}), meta["id"].astext.not_in(keep_ids))


def build_search_statement(
    table: Table,
    vector: list[float],
    row_filter: MetadataFilter,
    amount: int,
    now: datetime,
    ranking: RankingConfig,
) -> Select:
    """Rank rows by ``distance * w_sim - exp(-ln2 * age / half_life) * w_rec``."""
    distance = table.c.vector.cosine_distance(vector)
    age_days = extract("epoch", literal(now, DateTime(timezone=True)) - table.c["lastUpdated"]) / SECONDS_PER_DAY
    exponent = func.greatest(-LN2 * age_days / ranking.half_life_days, _MIN_EXPONENT)
    recency = func.coalesce(func.exp(exponent, type_=Float), 0.0)
    score = (distance * ranking.similarity_weight - recency * ranking.recency_weight).label("_score")
    return (
        select(table, distance.label("_distance"), score)
        .where(table.c["metadata"].contains(row_filter))
        .order_by(score.asc())
        .limit(amount)
    )


def _to_row(mapping: Any) -> EmbeddingRow:
    return EmbeddingRow(
        id=mapping["id"],
        content=mapping["content"],
        metadata=mapping["metadata"],
        vector=[float(x) for x in mapping["vector"]],
        hash=mapping["hash"],
        last_updated=mapping["lastUpdated"],
    )


def _to_params(row: EmbeddingRow) -> dict[str, Any]:
    return {
        "id": row.id,
        "content": row.content,
        "metadata": row.metadata,
        "vector": row.vector,
        "hash": row.hash,
        "lastUpdated": row.last_updated,
    }


class PgVectorStore(EmbeddingStore):
    """pgvector-backed embedding store.

    Parameters
    ----------
    engine:
        SQLAlchemy async engine connected to PostgreSQL.
    table_name:
        Name of the embeddings table.
    dimension:
        Fixed embedding dimension, or ``None`` for an unconstrained column.
    **kwargs:
        Forwarded to :class:`~rag_sync.store.base.EmbeddingStore`.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        table_name: str = "embeddings",
        dimension: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._engine = engine
        self.table = build_embeddings_table(MetaData(), table_name, dimension)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> PgVectorStore:
        engine = create_async_engine(config.database_url, pool_pre_ping=True)
        return cls(
            engine,
            table_name=config.embeddings_table,
            dimension=config.embedding_dimension,
            amount=config.store_amount,
            chunk_size=config.store_chunk_size,
            embed_batch_size=config.embed_batch_size,
            ranking=RankingConfig.from_settings(config),
        )

    async def migrate(self) -> None:
        """Create or upgrade the embeddings table."""
        await create_schema(self._engine, self.table)

    # -- EmbeddingStore overrides ---------------------------------------------

    def _transaction(self):  # noqa: ANN202
        return self._engine.begin()

    async def _find_by_documents(
        self, tx: AsyncConnection, keys: list[tuple[str, str]]
    ) -> list[EmbeddingRow]:
        if not keys:
            return []
        result = await tx.execute(select_by_documents(self.table, keys))
        return [_to_row(r) for r in result.mappings()]

    async def _find_by_filter(self, tx: AsyncConnection, row_filter: MetadataFilter) -> list[EmbeddingRow]:
        result = await tx.execute(select_by_filter(self.table, row_filter))
        return [_to_row(r) for r in result.mappings()]

    async def _delete_ids(self, tx: AsyncConnection, ids: list[UUID]) -> None:
        await tx.execute(delete_by_ids(self.table, ids))

    async def _delete_matching(self, tx: AsyncConnection, row_filter: MetadataFilter) -> int:
        result = await tx.execute(delete_by_filter(self.table, row_filter))
        return result.rowcount

    async def _delete_unreported(self, tx: AsyncConnection, source: str, keep_ids: list[str]) -> int:
        result = await tx.execute(delete_unreported(self.table, source, keep_ids))
        return result.rowcount

    async def _insert(self, tx: AsyncConnection, rows: list[EmbeddingRow]) -> None:
        if not rows:
            return
        try:
            await tx.execute(insert(self.table), [_to_params(r) for r in rows])
        except Exception:
            logger.exception("Error inserting %d embedding rows", len(rows))
            raise

    async def _search(
        self,
        tx: AsyncConnection,
        vector: list[float],
        row_filter: MetadataFilter,
        amount: int,
        now: datetime,
    ) -> list[ScoredRow]:
        stmt = build_search_statement(self.table, vector, row_filter, amount, now, self.ranking)
        result = await tx.execute(stmt)
        hits: list[ScoredRow] = []
        for mapping in result.mappings():
            if mapping["_distance"] is None or mapping["content"] is None:
                continue
            hits.append(
                ScoredRow(row=_to_row(mapping), distance=mapping["_distance"], score=mapping["_score"])
            )
        return hits

    async def _count(self, tx: AsyncConnection, row_filter: MetadataFilter) -> int:
        stmt = select(func.count()).select_from(self.table).where(self.table.c["metadata"].contains(row_filter))
        return (await tx.execute(stmt)).scalar_one()

    async def health_check(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.warning("PostgreSQL health-check failed", exc_info=True)
            return False

    async def close(self) -> None:
        await self._engine.dispose()
