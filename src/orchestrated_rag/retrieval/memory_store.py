"""In-memory implementation of the vector-store abstraction.

Chunks live in an insertion-ordered dict keyed by id; search is a linear
cosine-similarity scan.  The whole chunk set can be persisted as a single
JSON snapshot in a :class:`~orchestrated_rag.retrieval.snapshot.KeyValueStore`
and restored on the next start, as long as the snapshot is recent enough
and was written by the same schema version.

Memory is authoritative for the session: persistence failures are logged
and swallowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from orchestrated_rag.errors import DimensionMismatch, PersistenceError
from orchestrated_rag.retrieval.base import VectorStoreBase
from orchestrated_rag.retrieval.models import (
    SCHEMA_VERSION,
    Chunk,
    SearchResult,
    StoreSnapshot,
    UpdateCheck,
)
from orchestrated_rag.retrieval.similarity import cosine_similarity
from orchestrated_rag.retrieval.snapshot import KeyValueStore

logger = logging.getLogger(__name__)

SNAPSHOT_SIZE_WARNING_BYTES = 4 * 1024 * 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryVectorStore(VectorStoreBase):
    """Vector store held in process memory with snapshot persistence.

    Parameters
    ----------
    storage:
        Key-value backend holding the persisted snapshot.
    storage_key:
        Key of the snapshot blob.
    similarity_threshold:
        Minimum cosine similarity for a chunk to be returned by :meth:`search`.
    noise_floor:
        Similarities at or below this value are never returned, whatever
        the threshold.
    max_age:
        Snapshots older than this are discarded on load.
    refresh_window:
        :meth:`check_if_update_needed` asks for a rebuild once the snapshot
        is older than this, even when the fingerprint matches.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        storage_key: str = "vectordb_data",
        similarity_threshold: float = 0.7,
        noise_floor: float = 0.1,
        max_age: timedelta = timedelta(days=7),
        refresh_window: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage = storage
        self.storage_key = storage_key
        self.similarity_threshold = similarity_threshold
        self.noise_floor = noise_floor
        self.max_age = max_age
        self.refresh_window = refresh_window
        self._clock = clock
        self._chunks: dict[str, Chunk] = {}
        self._dimension: int | None = None
        self._initialized = False

    # -- lifecycle --------------------------------------------------------------

    def initialize(self) -> None:
        if self._initialized:
            return

        snapshot = self._load_snapshot()
        if snapshot is not None:
            try:
                for chunk in snapshot.chunks:
                    self._insert(chunk)
            except DimensionMismatch:
                logger.warning("Snapshot holds mixed embedding dimensions, discarding it")
                self._reset_memory()
                self._erase_snapshot()
            else:
                logger.info("Loaded %d chunks from storage", len(self._chunks))

        self._initialized = True
        logger.info("Vector store initialized")

    def clear(self) -> None:
        logger.info("Clearing vector store with %d chunks", len(self._chunks))
        self._reset_memory()
        self._erase_snapshot()

    def finalize_batch(self, fingerprint: str) -> None:
        snapshot = StoreSnapshot(
            chunks=list(self._chunks.values()),
            fingerprint=fingerprint,
            saved_at=self._clock(),
            schema_version=SCHEMA_VERSION,
        )
        try:
            serialized = snapshot.model_dump_json()
            if len(serialized) > SNAPSHOT_SIZE_WARNING_BYTES:
                logger.warning(
                    "Snapshot is %.1f MB, may hit storage limits",
                    len(serialized) / (1024 * 1024),
                )
            self._storage.set(self.storage_key, serialized)
        except Exception:
            logger.exception("Error saving snapshot, continuing without persistence")
            return
        logger.info("Saved %d chunks to storage", len(snapshot.chunks))

    def check_if_update_needed(self, current_fingerprint: str) -> UpdateCheck:
        if not self._chunks:
            return UpdateCheck(needs_update=True, fingerprint=current_fingerprint)

        snapshot = self._load_snapshot()
        if snapshot is None:
            return UpdateCheck(needs_update=True, fingerprint=current_fingerprint)

        if snapshot.fingerprint != current_fingerprint:
            logger.info("Document set changed, update needed")
            return UpdateCheck(needs_update=True, fingerprint=current_fingerprint)

        if self._clock() - snapshot.saved_at > self.refresh_window:
            logger.info("Snapshot older than %s, update needed", self.refresh_window)
            return UpdateCheck(needs_update=True, fingerprint=current_fingerprint)

        return UpdateCheck(needs_update=False, fingerprint=current_fingerprint)

    # -- writes -----------------------------------------------------------------

    def add_chunk(self, chunk: Chunk) -> None:
        self._insert(chunk)
        logger.debug("Added chunk %s from %s", chunk.id, chunk.source)

    def remove_chunks_by_source(self, source: str) -> int:
        doomed = [chunk_id for chunk_id, chunk in self._chunks.items() if chunk.source == source]
        for chunk_id in doomed:
            del self._chunks[chunk_id]
        if not self._chunks:
            self._dimension = None
        logger.info("Removed %d chunks from source: %s", len(doomed), source)
        return len(doomed)

    # -- reads ------------------------------------------------------------------

    def search(self, query_embedding: list[float], limit: int = 5) -> list[SearchResult]:
        if self._dimension is not None and len(query_embedding) != self._dimension:
            raise DimensionMismatch(expected=self._dimension, actual=len(query_embedding))

        logger.debug("Searching %d chunks, limit=%d", len(self._chunks), limit)
        results: list[SearchResult] = []
        for chunk in self._chunks.values():
            similarity = cosine_similarity(query_embedding, chunk.embedding)
            if similarity >= self.similarity_threshold and similarity > self.noise_floor:
                results.append(SearchResult(chunk=chunk, similarity=similarity))

        # sort() is stable: equal similarities keep insertion order.
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[: max(limit, 0)]

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    def count_by_source(self, source: str) -> int:
        return sum(1 for chunk in self._chunks.values() if chunk.source == source)

    def chunks(self) -> list[Chunk]:
        """Return the stored chunks in insertion order."""
        return list(self._chunks.values())

    def get_status(self) -> str:
        return "connected" if self._initialized else "disconnected"

    def health_check(self) -> bool:
        return self._initialized

    # -- internals --------------------------------------------------------------

    def _insert(self, chunk: Chunk) -> None:
        if self._dimension is None:
            self._dimension = chunk.dimension
        elif chunk.dimension != self._dimension:
            raise DimensionMismatch(expected=self._dimension, actual=chunk.dimension)
        self._chunks[chunk.id] = chunk

    def _reset_memory(self) -> None:
        self._chunks.clear()
        self._dimension = None

    def _load_snapshot(self) -> StoreSnapshot | None:
        """Read and validate the persisted snapshot.

        Invalid, expired or unreadable snapshots are erased and ``None`` is
        returned.
        """
        try:
            raw = self._storage.get(self.storage_key)
        except PersistenceError:
            logger.exception("Error reading snapshot")
            return None
        if raw is None:
            return None

        try:
            snapshot = StoreSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning("Stored snapshot is malformed, clearing it", exc_info=True)
            self._erase_snapshot()
            return None

        saved_at = snapshot.saved_at
        if saved_at.tzinfo is None:
            snapshot.saved_at = saved_at = saved_at.replace(tzinfo=timezone.utc)

        expired = self._clock() - saved_at > self.max_age
        wrong_version = snapshot.schema_version != SCHEMA_VERSION
        if expired or wrong_version:
            logger.info(
                "Stored snapshot is %s, clearing it",
                "expired" if expired else f"schema {snapshot.schema_version!r}",
            )
            self._erase_snapshot()
            return None

        return snapshot

    def _erase_snapshot(self) -> None:
        try:
            self._storage.delete(self.storage_key)
        except PersistenceError:
            logger.exception("Error erasing snapshot")
