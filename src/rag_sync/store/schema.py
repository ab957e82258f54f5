"""Table definition and migrations for the ``embeddings`` table.

One row per embedded chunk::

    id           uuid         primary key, uuid_generate_v4()
    content      text         chunk text, NUL bytes stripped
    metadata     jsonb        must contain "source" and "id"
    vector       vector(N)    embedding, cosine-indexed when N is known
    hash         varchar      sha256 of content
    lastUpdated  timestamptz  time the row was written
"""

from __future__ import annotations

import logging

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, Index, MetaData, String, Table, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "embeddings"


def build_embeddings_table(
    metadata: MetaData,
    name: str = DEFAULT_TABLE_NAME,
    dimension: int | None = None,
) -> Table:
    """Declare the embeddings table (and its indexes) on *metadata*."""
    table = Table(
        name,
        metadata,
        Column(
            "id",
            PG_UUID(as_uuid=True),
            primary_key=True,
            server_default=text("uuid_generate_v4()"),
            comment="UUID of the embedding",
        ),
        Column("content", Text, nullable=False, comment="Chunk of text that was embedded"),
        Column(
            "metadata",
            JSONB,
            nullable=False,
            comment="Document metadata; source and id identify the logical document",
        ),
        Column("vector", Vector(dimension), nullable=False, comment="Vector weights of the content"),
        Column("hash", String(255), comment="The content hash of the embedding document"),
        Column(
            "lastUpdated",
            DateTime(timezone=True),
            comment="Timestamp of the last update to the embedding document",
        ),
        comment="Embeddings of documents from the system used as RAG injectables.",
    )
    Index(f"ix_{name}_metadata", table.c["metadata"], postgresql_using="gin")
    if dimension is not None:
        Index(
            f"ix_{name}_vector_hnsw",
            table.c.vector,
            postgresql_using="hnsw",
            postgresql_ops={"vector": "vector_cosine_ops"},
        )
    return table


async def create_schema(engine: AsyncEngine, table: Table) -> None:
    """Create the extensions, the table and its indexes, then apply upgrades."""
    async with engine.begin() as conn:
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"'))
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(table.metadata.create_all, tables=[table])
    await upgrade_schema(engine, table)
    logger.info("Schema for table %r is up to date", table.name)


async def upgrade_schema(engine: AsyncEngine, table: Table) -> None:
    """Add the versioning columns to tables created before content hashing existed."""
    async with engine.begin() as conn:
        await conn.execute(
            text(f'ALTER TABLE "{table.name}" ADD COLUMN IF NOT EXISTS "hash" VARCHAR(255)')
        )
        await conn.execute(
            text(f'ALTER TABLE "{table.name}" ADD COLUMN IF NOT EXISTS "lastUpdated" TIMESTAMPTZ')
        )


async def drop_schema(engine: AsyncEngine, table: Table) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(table.metadata.drop_all, tables=[table])
