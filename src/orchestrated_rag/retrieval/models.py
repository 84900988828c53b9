"""Domain models for stored chunks, search hits, snapshots and citations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = "1.0.0"
"""Snapshot layout version understood by this code."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Chunk(BaseModel):
    """A bounded unit of document text paired with its embedding.

    Chunks are created by the ingestion pipeline and never mutated
    afterwards; the model is frozen and the embedding is held as a tuple
    so instances handed out by the store are read-only views.

    Attributes
    ----------
    id:
        Unique chunk identifier, ``"<document id>_chunk_<index>"``.
    content:
        The chunk text.
    embedding:
        Dense vector; its length is fixed by the embedding model.
    source:
        Name of the document the chunk came from.
    chunk_index:
        Ordinal position of the chunk within its document.
    created_at:
        UTC timestamp of when the chunk was embedded.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    embedding: tuple[float, ...]
    source: str
    chunk_index: int
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def dimension(self) -> int:
        return len(self.embedding)


class SearchResult(BaseModel):
    """A stored chunk together with its similarity to the query."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    similarity: float


class StoreSnapshot(BaseModel):
    """Persisted form of the vector store's chunk set.

    Valid only when ``schema_version`` matches :data:`SCHEMA_VERSION` and
    ``saved_at`` falls inside the store's freshness window.
    """

    chunks: list[Chunk] = Field(default_factory=list)
    fingerprint: str
    saved_at: datetime = Field(default_factory=_utcnow)
    schema_version: str = SCHEMA_VERSION


class UpdateCheck(BaseModel):
    """Outcome of :meth:`VectorStoreBase.check_if_update_needed`."""

    needs_update: bool
    fingerprint: str


class Citation(BaseModel):
    """Provenance record linking a retrieved chunk back to its source document.

    Attributes
    ----------
    citation_id:
        Unique identifier for this citation instance.
    document_id:
        The store ID of the chunk (``None`` when unknown).
    source:
        Name of the source document.
    chunk_index:
        Ordinal position of the chunk within the source document.
    score:
        Cosine similarity between the query and the chunk.
    metadata:
        Extra data attached by the caller (e.g. the subtopic).
    retrieved_at:
        UTC timestamp of when the retrieval happened.
    """

    citation_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    document_id: str | None = None
    source: str = "unknown"
    chunk_index: int | None = None
    score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    retrieved_at: datetime = Field(default_factory=_utcnow)

    def short_ref(self) -> str:
        """Return a compact ``[source§chunk]`` reference string."""
        chunk = self.chunk_index if self.chunk_index is not None else "?"
        return f"[{self.source}§{chunk}]"


class RetrievalResult(BaseModel):
    """A single retrieved passage together with its citation."""

    content: str
    citation: Citation

    @classmethod
    def from_search_result(cls, hit: SearchResult, **metadata: Any) -> RetrievalResult:
        chunk = hit.chunk
        return cls(
            content=chunk.content,
            citation=Citation(
                document_id=chunk.id,
                source=chunk.source,
                chunk_index=chunk.chunk_index,
                score=hit.similarity,
                metadata=metadata,
            ),
        )

    def __str__(self) -> str:  # noqa: D105
        return f"{self.citation.short_ref()} {self.content[:120]}…"
