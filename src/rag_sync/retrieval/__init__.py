"""
Retrieval — agent-facing access to the embedding store.

Public surface
--------------
- :func:`create_search_knowledge_tool` — ``search-knowledge-base`` LangChain tool.
- :class:`KnowledgeRetriever` — LangChain ``BaseRetriever`` adapter.
"""

from rag_sync.retrieval.retriever import KnowledgeRetriever
from rag_sync.retrieval.tools import create_search_knowledge_tool

__all__ = ["KnowledgeRetriever", "create_search_knowledge_tool"]
