"""Ingestor contract and the registry the pipeline iterates over."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import Protocol, runtime_checkable

from rag_sync.store.models import EmbeddingDocument

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "rag_sync.ingestors"

SaveDocumentsBatch = Callable[[list[EmbeddingDocument]], Awaitable[None]]


@dataclass(frozen=True)
class IngestorOptions:
    """Handed to :meth:`Ingestor.ingest`.

    Streaming sources call ``save_documents_batch`` once per page; sources
    that gather everything up front may simply return their documents.
    """

    save_documents_batch: SaveDocumentsBatch


@runtime_checkable
class Ingestor(Protocol):
    """A content-source adapter feeding documents to the pipeline.

    ``id`` must be unique among registered ingestors: it is the ``source``
    used when clearing a document's previously stored chunks.
    """

    id: str

    async def ingest(self, options: IngestorOptions) -> list[EmbeddingDocument] | None: ...


class DuplicateIngestorError(ValueError):
    """Raised when an ingestor id is registered twice."""


class IngestorRegistry:
    """Ordered set of ingestors, keyed by id."""

    def __init__(self, ingestors: list[Ingestor] | None = None) -> None:
        self._ingestors: dict[str, Ingestor] = {}
        for ingestor in ingestors or []:
            self.register(ingestor)

    def register(self, ingestor: Ingestor) -> None:
        if not getattr(ingestor, "id", None):
            raise ValueError("Ingestor must define a non-empty id")
        if ingestor.id in self._ingestors:
            raise DuplicateIngestorError(f"Ingestor with id {ingestor.id} is already registered.")
        self._ingestors[ingestor.id] = ingestor
        logger.debug("Registered ingestor %r", ingestor.id)

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """Register ingestors published by installed plugins.

        Each entry point must resolve to a zero-argument factory returning an
        :class:`Ingestor`. Returns the number of ingestors registered.
        """
        loaded = 0
        for entry_point in entry_points(group=group):
            factory = entry_point.load()
            self.register(factory())
            logger.info("Loaded ingestor plugin %r", entry_point.name)
            loaded += 1
        return loaded

    @property
    def ids(self) -> list[str]:
        return list(self._ingestors)

    def __iter__(self) -> Iterator[Ingestor]:
        return iter(list(self._ingestors.values()))

    def __len__(self) -> int:
        return len(self._ingestors)

    def __contains__(self, ingestor_id: object) -> bool:
        return ingestor_id in self._ingestors
