"""LangChain tool exposing the knowledge base to agents.

The tool wraps :meth:`EmbeddingStore.similarity_search`, so results are
ranked by the store's hybrid similarity + recency score and each passage
carries its source, id and age.
"""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field

from rag_sync.store.base import EmbeddingStore
from rag_sync.store.models import EmbeddingDocument

logger = logging.getLogger(__name__)

TOOL_NAME = "search-knowledge-base"
NO_RESULTS = "No relevant information found in the knowledge base."
RESULT_SEPARATOR = "\n---\n"


class KnowledgeFilter(BaseModel):
    """Optional restriction of the search to one source and/or document."""

    source: str | None = Field(default=None, description="Only search documents from this ingestor id")
    id: str | None = Field(default=None, description="Only search chunks of this document id")

    def to_metadata_filter(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SearchKnowledgeInput(BaseModel):
    query: str = Field(description="Natural-language search query")
    filter: KnowledgeFilter | None = Field(default=None, description="Optional metadata filter")
    amount: int | None = Field(default=None, ge=1, description="Maximum number of passages to return")


def format_document(doc: EmbeddingDocument) -> str:
    meta = doc.metadata
    header = f"[{meta.get('source')}/{meta.get('id')}"
    if meta.get("chunk") is not None:
        header += f"#{meta['chunk']}"
    header += "]"
    if meta.get("ageInDays") is not None:
        header += f" ({meta['ageInDays']} days old)"
    return f"{header}\n{doc.content}"


def format_results(documents: list[EmbeddingDocument]) -> str:
    if not documents:
        return NO_RESULTS
    return RESULT_SEPARATOR.join(format_document(doc) for doc in documents)


def create_search_knowledge_tool(store: EmbeddingStore) -> StructuredTool:
    """Build the ``search-knowledge-base`` tool bound to *store*."""

    async def search_knowledge_base(
        query: str,
        filter: KnowledgeFilter | dict[str, Any] | None = None,  # noqa: A002
        amount: int | None = None,
    ) -> str:
        if isinstance(filter, dict):
            filter = KnowledgeFilter.model_validate(filter)
        row_filter = filter.to_metadata_filter() if filter else None
        documents = await store.similarity_search(query, filter=row_filter or None, amount=amount)
        logger.info("%s returned %d results for %r", TOOL_NAME, len(documents), query)
        return format_results(documents)

    return StructuredTool.from_function(
        coroutine=search_knowledge_base,
        name=TOOL_NAME,
        description=(
            "Search the internal knowledge base for passages relevant to a question. "
            "Newer documents are preferred when relevance is similar. Optionally "
            "restrict the search to a source or document id."
        ),
        args_schema=SearchKnowledgeInput,
    )
