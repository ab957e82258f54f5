"""Unit tests for the local directory ingestor."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from rag_sync.ingestion.ingestor import Ingestor, IngestorOptions
from rag_sync.ingestion.loader import DirectoryIngestor
from rag_sync.store.models import EmbeddingDocument


class Collector:
    def __init__(self) -> None:
        self.batches: list[list[EmbeddingDocument]] = []

    async def __call__(self, documents: list[EmbeddingDocument]) -> None:
        self.batches.append(list(documents))

    @property
    def documents(self) -> list[EmbeddingDocument]:
        return [doc for batch in self.batches for doc in batch]


@pytest.fixture()
def docs_dir(tmp_path: Path) -> Path:
    (tmp_path / "guide.md").write_text("# Guide\n\nhello world", encoding="utf-8")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "notes.md").write_text("mars planet", encoding="utf-8")
    (tmp_path / "ignored.txt").write_text("not markdown", encoding="utf-8")
    return tmp_path


def test_directory_ingestor_is_an_ingestor(docs_dir: Path) -> None:
    assert isinstance(DirectoryIngestor("docs", docs_dir), Ingestor)


async def test_ingest_maps_files_to_documents(docs_dir: Path) -> None:
    collector = Collector()
    await DirectoryIngestor("docs", docs_dir).ingest(IngestorOptions(save_documents_batch=collector))

    by_id = {doc.document_id: doc for doc in collector.documents}
    assert sorted(by_id) == ["guide.md", "nested/notes.md"]
    assert by_id["nested/notes.md"].content == "mars planet"
    assert by_id["guide.md"].source == "docs"
    assert by_id["guide.md"].metadata["url"].startswith("file://")


async def test_ingest_batches(docs_dir: Path) -> None:
    for i in range(3):
        (docs_dir / f"extra{i}.md").write_text(f"extra {i}", encoding="utf-8")
    collector = Collector()

    await DirectoryIngestor("docs", docs_dir, batch_size=2).ingest(IngestorOptions(save_documents_batch=collector))

    assert [len(batch) for batch in collector.batches] == [2, 2, 1]


async def test_missing_directory_raises(tmp_path: Path) -> None:
    ingestor = DirectoryIngestor("docs", tmp_path / "missing")
    with pytest.raises(FileNotFoundError):
        await ingestor.ingest(IngestorOptions(save_documents_batch=Collector()))


def test_invalid_batch_size(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        DirectoryIngestor("docs", tmp_path, batch_size=0)


async def test_files_are_read_off_the_event_loop(docs_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    ingestor = DirectoryIngestor("docs", docs_dir, batch_size=1)
    reader_threads: set[int] = set()
    read_batch = ingestor._read_batch

    def tracking_read_batch(files):  # noqa: ANN001, ANN202
        reader_threads.add(threading.get_ident())
        return read_batch(files)

    monkeypatch.setattr(ingestor, "_read_batch", tracking_read_batch)
    collector = Collector()
    await ingestor.ingest(IngestorOptions(save_documents_batch=collector))

    assert len(collector.documents) == 2
    assert reader_threads
    assert threading.get_ident() not in reader_threads
