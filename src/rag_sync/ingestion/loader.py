"""Local directory ingestor — a thin wrapper around LangChain document loaders."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from itertools import islice
from pathlib import Path

from langchain_community.document_loaders import DirectoryLoader, TextLoader
from langchain_core.documents import Document

from rag_sync.ingestion.ingestor import IngestorOptions
from rag_sync.store.models import EmbeddingDocument

logger = logging.getLogger(__name__)

DEFAULT_EXCLUSIONS = ["**/.git/**", "**/node_modules/**", "**/__pycache__/**"]


class DirectoryIngestor:
    """Feeds every text file under *path* matching *glob* to the pipeline.

    Parameters
    ----------
    id:
        Ingestor id, stored as ``source`` on every document.
    path:
        Root directory containing source documents.
    glob:
        File-matching pattern forwarded to ``DirectoryLoader``.
    batch_size:
        Number of files handed to ``save_documents_batch`` at a time.
    exclude:
        Glob patterns skipped by the loader.

    The document ``id`` is the file path relative to *path*, so a file keeps
    its identity across runs and edits replace its previous chunks.
    """

    def __init__(
        self,
        id: str,  # noqa: A002
        path: str | Path,
        *,
        glob: str = "**/*.md",
        batch_size: int = 10,
        exclude: list[str] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.id = id
        self.path = Path(path)
        self.glob = glob
        self.batch_size = batch_size
        self.exclude = DEFAULT_EXCLUSIONS if exclude is None else exclude

    def _loader(self) -> DirectoryLoader:
        return DirectoryLoader(
            str(self.path),
            glob=self.glob,
            exclude=self.exclude,
            loader_cls=TextLoader,  # type: ignore[arg-type]
            loader_kwargs={"autodetect_encoding": True},
            silent_errors=True,
        )

    def _to_document(self, file_path: Path, content: str) -> EmbeddingDocument:
        resolved = file_path.resolve()
        return EmbeddingDocument(
            content=content,
            metadata={
                "source": self.id,
                "id": resolved.relative_to(self.path.resolve()).as_posix(),
                "url": resolved.as_uri(),
            },
        )

    async def ingest(self, options: IngestorOptions) -> None:
        if not self.path.is_dir():
            raise FileNotFoundError(f"Ingestion directory does not exist: {self.path}")

        files = self._loader().lazy_load()
        total = 0
        while True:
            # File reads run in a worker thread, one batch at a time.
            batch = await asyncio.to_thread(self._read_batch, files)
            if not batch:
                break
            await options.save_documents_batch(batch)
            total += len(batch)
        logger.info("Loaded %d files from %s", total, self.path)

    def _read_batch(self, files: Iterator[Document]) -> list[EmbeddingDocument]:
        return [
            self._to_document(Path(doc.metadata["source"]), doc.page_content)
            for doc in islice(files, self.batch_size)
        ]
