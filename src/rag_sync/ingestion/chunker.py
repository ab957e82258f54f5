"""Text chunking strategies."""

from __future__ import annotations

from collections.abc import Iterable

from langchain_text_splitters import RecursiveCharacterTextSplitter

from rag_sync.store.models import EmbeddingDocument

DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


def build_splitter(chunk_size: int = 500, chunk_overlap: int = 50) -> RecursiveCharacterTextSplitter:
    """Return a splitter whose chunks are verbatim, overlapping substrings of the input.

    Separators are kept and whitespace is not stripped, so removing the
    overlap between consecutive chunks reproduces the original text.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size ({chunk_size}) must be >= 1")
    if not 0 <= chunk_overlap < chunk_size:
        raise ValueError(f"chunk_overlap ({chunk_overlap}) must be >= 0 and < chunk_size ({chunk_size})")
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=DEFAULT_SEPARATORS,
        keep_separator=True,
        strip_whitespace=False,
    )


def split_text(content: str, chunk_size: int = 500, chunk_overlap: int = 50) -> list[str]:
    """Split *content* into chunks of at most *chunk_size* characters."""
    if not content:
        return []
    return build_splitter(chunk_size, chunk_overlap).split_text(content)


def chunk_documents(
    documents: Iterable[EmbeddingDocument],
    chunk_size: int = 500,
    chunk_overlap: int = 50,
) -> list[EmbeddingDocument]:
    """Split *documents* into smaller chunks for embedding.

    Parameters
    ----------
    documents:
        Source documents produced by an ingestor.
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of overlapping characters between consecutive chunks.

    Returns
    -------
    list[EmbeddingDocument]
        One document per chunk carrying the parent metadata plus
        ``chunk: "<index>"``, so ``(source, id, chunk)`` identifies it.
    """
    splitter = build_splitter(chunk_size, chunk_overlap)
    chunks: list[EmbeddingDocument] = []
    for doc in documents:
        if not doc.content:
            continue
        for index, text in enumerate(splitter.split_text(doc.content)):
            chunks.append(EmbeddingDocument(metadata={**doc.metadata, "chunk": str(index)}, content=text))
    return chunks
