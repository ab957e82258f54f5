"""Unit tests for the data-ingestion pipeline and the ingestor registry."""

from __future__ import annotations

import pytest

from conftest import (
    FailingIngestor,
    KeywordEmbeddings,
    ReturningIngestor,
    StaticIngestor,
    make_doc,
)
from rag_sync.config import Settings
from rag_sync.ingestion.ingestor import DuplicateIngestorError, Ingestor, IngestorRegistry
from rag_sync.ingestion.pipeline import TASK_ID, DataIngestionPipeline
from rag_sync.store.memory_store import InMemoryEmbeddingStore


def _pipeline(store: InMemoryEmbeddingStore, *ingestors: Ingestor, **kwargs) -> DataIngestionPipeline:
    return DataIngestionPipeline(store, IngestorRegistry(list(ingestors)), **kwargs)


# ── registry ────────────────────────────────────────────────────────────


def test_registry_rejects_duplicate_ids() -> None:
    registry = IngestorRegistry([StaticIngestor("a")])
    with pytest.raises(DuplicateIngestorError, match="Ingestor with id a is already registered."):
        registry.register(StaticIngestor("a"))


def test_registry_keeps_registration_order() -> None:
    registry = IngestorRegistry([StaticIngestor("b"), StaticIngestor("a")])
    assert registry.ids == ["b", "a"]
    assert "a" in registry
    assert len(registry) == 2


def test_registry_rejects_empty_id() -> None:
    with pytest.raises(ValueError):
        IngestorRegistry([StaticIngestor("")])


def test_static_ingestor_satisfies_protocol() -> None:
    assert isinstance(StaticIngestor("a"), Ingestor)


# ── run ─────────────────────────────────────────────────────────────────


async def test_run_without_ingestors(store: InMemoryEmbeddingStore, caplog: pytest.LogCaptureFixture) -> None:
    report = await _pipeline(store).run()
    assert report.ingestors == []
    assert "No ingestors available for data ingestion." in caplog.text


async def test_two_runs_pick_up_changes(store: InMemoryEmbeddingStore, embeddings: KeywordEmbeddings) -> None:
    await store.add_documents([make_doc("wiki", "w", "weather sunny")])
    ingestor_a = StaticIngestor("A", [[make_doc("A", "1", "hello world")]])
    ingestor_b = StaticIngestor("B")
    pipeline = _pipeline(store, ingestor_a, ingestor_b)

    await pipeline.run()
    first = next(r for r in store.rows if r.metadata["source"] == "A")
    assert first.content == "hello world"
    assert first.metadata["chunk"] == "0"

    ingestor_a.batches = [[make_doc("A", "1", "hello mars")]]
    embeddings.embedded_texts.clear()
    report = await pipeline.run()

    assert not report.failed
    assert embeddings.embedded_texts == ["hello mars"]
    a_rows = [r for r in store.rows if r.metadata["source"] == "A"]
    assert [r.content for r in a_rows] == ["hello mars"]
    assert a_rows[0].hash != first.hash
    assert a_rows[0].last_updated >= first.last_updated
    assert await store.count({"source": "B"}) == 0

    results = await store.similarity_search("mars")
    assert [d.metadata["source"] for d in results] == ["A", "wiki"]


async def test_unreported_documents_are_kept_by_default(store: InMemoryEmbeddingStore) -> None:
    ingestor = StaticIngestor("B", [[make_doc("B", "x", "weather sunny")]])
    pipeline = _pipeline(store, ingestor)
    await pipeline.run()

    ingestor.batches = []
    report = await pipeline.run()

    assert report.ingestors[0].pruned == 0
    assert [r.content for r in store.rows] == ["weather sunny"]


async def test_documents_are_stored_under_ingestor_id(
    store: InMemoryEmbeddingStore, embeddings: KeywordEmbeddings, caplog: pytest.LogCaptureFixture
) -> None:
    pipeline = _pipeline(store, StaticIngestor("github", [[make_doc("gh", "1", "hello world")]]))

    for _ in range(3):
        await pipeline.run()

    assert len(store.rows) == 1
    assert store.rows[0].metadata["source"] == "github"
    assert embeddings.embedded_texts == ["hello world"]
    assert "declares source 'gh'" in caplog.text


async def test_unchanged_documents_are_not_reembedded(
    store: InMemoryEmbeddingStore, embeddings: KeywordEmbeddings
) -> None:
    pipeline = _pipeline(store, StaticIngestor("A", [[make_doc("A", "1", "hello world")]]))
    await pipeline.run()
    calls = embeddings.document_calls
    rows = store.rows

    await pipeline.run()

    assert embeddings.document_calls == calls
    assert store.rows == rows


async def test_shrinking_document_drops_old_chunks(store: InMemoryEmbeddingStore) -> None:
    long_text = " ".join(f"token{i:04d}" for i in range(100))
    ingestor = StaticIngestor("A", [[make_doc("A", "1", long_text)]])
    pipeline = _pipeline(store, ingestor, chunk_size=100, chunk_overlap=10)
    await pipeline.run()
    assert len(store.rows) > 1

    ingestor.batches = [[make_doc("A", "1", "short")]]
    await pipeline.run()

    assert [(r.metadata["chunk"], r.content) for r in store.rows] == [("0", "short")]


async def test_returned_documents_are_saved(store: InMemoryEmbeddingStore) -> None:
    report = await _pipeline(store, ReturningIngestor("R", [make_doc("R", "1", "python release")])).run()
    assert [r.content for r in store.rows] == ["python release"]
    assert report.ingestors[0].documents == 1
    assert report.ingestors[0].chunks == 1


async def test_failing_ingestor_does_not_stop_run(
    store: InMemoryEmbeddingStore, caplog: pytest.LogCaptureFixture
) -> None:
    failing = FailingIngestor("F", saved_first=[make_doc("F", "1", "kubernetes cluster")])
    healthy = StaticIngestor("H", [[make_doc("H", "1", "hello world")]])

    report = await _pipeline(store, failing, healthy).run()

    assert report.failed == ["F"]
    assert report.ingestors[0].error == "ConnectionError: upstream unavailable"
    assert report.ingestors[1].ok
    assert healthy.calls == 1
    # Batches saved before the failure stay committed.
    assert sorted(r.metadata["source"] for r in store.rows) == ["F", "H"]
    assert "Ingestor F failed" in caplog.text


async def test_prune_unreported_removes_dropped_documents(store: InMemoryEmbeddingStore) -> None:
    ingestor = StaticIngestor("A", [[make_doc("A", "1", "hello"), make_doc("A", "2", "world")]])
    pipeline = _pipeline(store, ingestor, prune_unreported=True)
    await pipeline.run()

    ingestor.batches = [[make_doc("A", "1", "hello")]]
    report = await pipeline.run()

    assert report.ingestors[0].pruned == 1
    assert [r.metadata["id"] for r in store.rows] == ["1"]


async def test_no_pruning_after_failure(store: InMemoryEmbeddingStore) -> None:
    await store.add_documents([make_doc("F", "old", "hello")])
    report = await _pipeline(store, FailingIngestor("F"), prune_unreported=True).run()
    assert report.ingestors[0].pruned == 0
    assert [r.metadata["id"] for r in store.rows] == ["old"]


def test_overlap_must_be_smaller_than_chunk_size(store: InMemoryEmbeddingStore) -> None:
    with pytest.raises(ValueError):
        _pipeline(store, chunk_size=100, chunk_overlap=100)


def test_from_settings() -> None:
    config = Settings(
        storage_backend="memory",
        chunk_size=200,
        chunk_overlap=20,
        ingestion_frequency_hours=1,
        ingestion_timeout_hours=0.5,
        ingestion_prune_unreported=True,
    )
    pipeline = DataIngestionPipeline.from_settings(InMemoryEmbeddingStore(), IngestorRegistry(), config)
    assert pipeline.chunk_size == 200
    assert pipeline.chunk_overlap == 20
    assert pipeline.prune_unreported is True
    assert pipeline.runner.schedule.frequency.total_seconds() == 3600
    assert pipeline.runner.schedule.timeout.total_seconds() == 1800


async def test_start_arms_scheduled_task(store: InMemoryEmbeddingStore) -> None:
    pipeline = _pipeline(store, StaticIngestor("A"))
    pipeline.start()
    try:
        assert pipeline.runner.running
        assert pipeline.runner._task.get_name() == TASK_ID
    finally:
        await pipeline.stop()
    assert not pipeline.runner.running
