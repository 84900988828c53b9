"""
Retrieval — vector storage, similarity search, and citations.

This module keeps the vector store behind a clean interface so that
the orchestrator never needs to know how chunks are held or persisted.

Public surface
--------------
- :class:`SemanticRetriever` — main entry point for retrieval with citations.
- :class:`VectorStoreBase` — abstract backend.
- :class:`InMemoryVectorStore` — default backend with snapshot persistence.
- :class:`Chunk`, :class:`SearchResult`, :class:`Citation`,
  :class:`RetrievalResult` — data models.
"""

from orchestrated_rag.retrieval.base import VectorStoreBase
from orchestrated_rag.retrieval.memory_store import InMemoryVectorStore
from orchestrated_rag.retrieval.models import Chunk, Citation, RetrievalResult, SearchResult
from orchestrated_rag.retrieval.retriever import SemanticRetriever
from orchestrated_rag.retrieval.snapshot import FileKeyValueStore, InMemoryKeyValueStore, KeyValueStore

__all__ = [
    "Chunk",
    "Citation",
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "InMemoryVectorStore",
    "KeyValueStore",
    "RetrievalResult",
    "SearchResult",
    "SemanticRetriever",
    "VectorStoreBase",
]
