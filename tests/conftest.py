"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.embeddings import Embeddings

from rag_sync.ingestion.ingestor import IngestorOptions
from rag_sync.store.memory_store import InMemoryEmbeddingStore
from rag_sync.store.models import EmbeddingDocument

VOCABULARY = [
    "hello",
    "world",
    "mars",
    "planet",
    "weather",
    "sunny",
    "kubernetes",
    "cluster",
    "python",
    "release",
]


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Deterministic embeddings ────────────────────────────────────────────


class KeywordEmbeddings(Embeddings):
    """Bag-of-words embeddings over a fixed vocabulary.

    A small constant bias dimension keeps vectors of texts without known
    words non-zero. Every call is counted so tests can assert that
    unchanged content is never re-embedded.
    """

    def __init__(self, vocabulary: list[str] | None = None) -> None:
        self.vocabulary = vocabulary or VOCABULARY
        self.document_calls = 0
        self.query_calls = 0
        self.embedded_texts: list[str] = []

    def _vector(self, text: str) -> list[float]:
        words = re.findall(r"[a-z0-9]+", text.lower())
        return [float(words.count(term)) for term in self.vocabulary] + [0.01]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls += 1
        self.embedded_texts.extend(texts)
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        self.query_calls += 1
        return self._vector(text)


class FakeClock:
    """Settable replacement for ``utcnow``."""

    def __init__(self) -> None:
        self.now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# ── Fake ingestors ──────────────────────────────────────────────────────


def make_doc(source: str, doc_id: str, content: str, **extra: str) -> EmbeddingDocument:
    return EmbeddingDocument(metadata={"source": source, "id": doc_id, **extra}, content=content)


class StaticIngestor:
    """Streams its documents through ``save_documents_batch`` one batch at a time."""

    def __init__(self, id: str, batches: list[list[EmbeddingDocument]] | None = None) -> None:  # noqa: A002
        self.id = id
        self.batches = batches or []
        self.calls = 0

    async def ingest(self, options: IngestorOptions) -> None:
        self.calls += 1
        for batch in self.batches:
            await options.save_documents_batch(batch)


class ReturningIngestor:
    """Returns its documents instead of streaming them."""

    def __init__(self, id: str, documents: list[EmbeddingDocument]) -> None:  # noqa: A002
        self.id = id
        self.documents = documents

    async def ingest(self, options: IngestorOptions) -> list[EmbeddingDocument]:
        return self.documents


class FailingIngestor:
    def __init__(self, id: str, saved_first: list[EmbeddingDocument] | None = None) -> None:  # noqa: A002
        self.id = id
        self.saved_first = saved_first or []

    async def ingest(self, options: IngestorOptions) -> None:
        if self.saved_first:
            await options.save_documents_batch(self.saved_first)
        raise ConnectionError("upstream unavailable")


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture()
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr("rag_sync.store.base.utcnow", fake)
    return fake


@pytest.fixture()
def store(embeddings: KeywordEmbeddings) -> InMemoryEmbeddingStore:
    memory_store = InMemoryEmbeddingStore()
    memory_store.connect_embeddings(embeddings)
    return memory_store
