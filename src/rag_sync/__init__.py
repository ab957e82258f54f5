"""rag-sync — versioned embedding store and scheduled ingestion pipeline for RAG."""

__version__ = "0.1.0"
