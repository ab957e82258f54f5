"""LangChain retriever over an :class:`EmbeddingStore`."""

from __future__ import annotations

import asyncio
from typing import Any

from langchain_core.callbacks import (
    AsyncCallbackManagerForRetrieverRun,
    CallbackManagerForRetrieverRun,
)
from langchain_core.documents import Document
from langchain_core.retrievers import BaseRetriever
from pydantic import ConfigDict

from rag_sync.store.base import EmbeddingStore
from rag_sync.store.models import EmbeddingDocument, MetadataFilter


def to_langchain_document(doc: EmbeddingDocument) -> Document:
    return Document(page_content=doc.content, metadata=dict(doc.metadata))


class KnowledgeRetriever(BaseRetriever):
    """Adapter that satisfies LangChain's retriever protocol.

    Parameters
    ----------
    store:
        Store to search; embeddings must be connected.
    amount:
        Number of documents returned (``None`` uses the store default).
    filter:
        Metadata containment filter applied to every query.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    store: EmbeddingStore
    amount: int | None = None
    filter: MetadataFilter | None = None

    async def _aget_relevant_documents(
        self, query: str, *, run_manager: AsyncCallbackManagerForRetrieverRun, **kwargs: Any
    ) -> list[Document]:
        documents = await self.store.similarity_search(query, filter=self.filter, amount=self.amount)
        return [to_langchain_document(doc) for doc in documents]

    def _get_relevant_documents(
        self, query: str, *, run_manager: CallbackManagerForRetrieverRun, **kwargs: Any
    ) -> list[Document]:
        # Sync callers outside an event loop only.
        documents = asyncio.run(self.store.similarity_search(query, filter=self.filter, amount=self.amount))
        return [to_langchain_document(doc) for doc in documents]
