"""Semantic retriever — embed a query, search the store, attach citations.

This is the read path used by the query orchestrator.  It works with any
:class:`~orchestrated_rag.retrieval.base.VectorStoreBase` and any object
with an ``async embed(text) -> list[float]`` method.

Usage::

    retriever = SemanticRetriever(store, embedder)
    results = await retriever.search("How do CISOs measure resilience?", k=5)
    for r in results:
        print(r.citation.short_ref(), r.content[:80])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from orchestrated_rag.retrieval.base import VectorStoreBase
from orchestrated_rag.retrieval.models import RetrievalResult

if TYPE_CHECKING:
    from orchestrated_rag.ingestion.embedder import EmbeddingProvider

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever that wraps a store and an embedding provider.

    Parameters
    ----------
    store:
        Vector store to search.
    embedder:
        Provider used to embed queries.
    default_k:
        Default number of results returned by :meth:`search`.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: EmbeddingProvider,
        *,
        default_k: int = 5,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.default_k = default_k

    @property
    def store(self) -> VectorStoreBase:
        return self._store

    async def search(self, query: str, *, k: int | None = None, **metadata: Any) -> list[RetrievalResult]:
        """Embed *query* and return up to *k* results with citations.

        Extra keyword arguments are copied into each citation's metadata.
        """
        embedding = await self._embedder.embed(query)
        return self.search_by_embedding(embedding, k=k, **metadata)

    def search_by_embedding(
        self,
        embedding: list[float],
        *,
        k: int | None = None,
        **metadata: Any,
    ) -> list[RetrievalResult]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = k or self.default_k
        hits = self._store.search(embedding, limit=k)
        logger.info("Retrieved %d chunks (k=%d)", len(hits), k)
        return [RetrievalResult.from_search_result(hit, **metadata) for hit in hits]
