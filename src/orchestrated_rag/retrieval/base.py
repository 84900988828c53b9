"""Abstract base class for vector-store backends.

Adding a new backend only requires subclassing :class:`VectorStoreBase`
and implementing the abstract methods.  The ingestion pipeline and the
query orchestrator are backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from orchestrated_rag.retrieval.models import Chunk, SearchResult, UpdateCheck


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface."""

    # -- lifecycle --------------------------------------------------------------

    @abstractmethod
    def initialize(self) -> None:
        """Restore any valid persisted snapshot.  Idempotent."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Drop every chunk and erase the persisted snapshot."""
        ...

    @abstractmethod
    def finalize_batch(self, fingerprint: str) -> None:
        """Persist the current chunk set tagged with *fingerprint*.

        Best-effort: persistence failures are logged, never raised.
        """
        ...

    @abstractmethod
    def check_if_update_needed(self, current_fingerprint: str) -> UpdateCheck:
        """Decide whether ingestion has to re-run for *current_fingerprint*."""
        ...

    # -- writes -----------------------------------------------------------------

    @abstractmethod
    def add_chunk(self, chunk: Chunk) -> None:
        """Insert *chunk*, overwriting any chunk with the same id."""
        ...

    @abstractmethod
    def remove_chunks_by_source(self, source: str) -> int:
        """Remove every chunk whose ``source`` equals *source*.

        Returns the number of chunks removed.
        """
        ...

    # -- reads ------------------------------------------------------------------

    @abstractmethod
    def search(self, query_embedding: list[float], limit: int = 5) -> list[SearchResult]:
        """Return at most *limit* chunks ordered by descending similarity.

        Each result carries the chunk and its cosine similarity to
        *query_embedding*.  Implementations raise
        :class:`~orchestrated_rag.errors.DimensionMismatch` when the query
        length differs from the stored embeddings.
        """
        ...

    @property
    @abstractmethod
    def chunk_count(self) -> int:
        """Number of chunks currently held in memory."""
        ...

    @abstractmethod
    def count_by_source(self, source: str) -> int:
        """Number of chunks belonging to *source*."""
        ...

    # -- optional overrides -----------------------------------------------------

    def health_check(self) -> bool:
        """Return ``True`` when the backend is ready to serve searches."""
        return True
