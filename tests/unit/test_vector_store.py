"""Unit tests for the in-memory vector store and its snapshot persistence."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import FrozenClock, make_chunk
from orchestrated_rag.errors import DimensionMismatch, PersistenceError
from orchestrated_rag.retrieval.memory_store import InMemoryVectorStore
from orchestrated_rag.retrieval.models import StoreSnapshot
from orchestrated_rag.retrieval.snapshot import FileKeyValueStore, InMemoryKeyValueStore, KeyValueStore

KEY = "vectordb_data"


def _fresh_store(storage: KeyValueStore, clock: FrozenClock) -> InMemoryVectorStore:
    store = InMemoryVectorStore(storage, clock=clock)
    store.initialize()
    return store


# ═══════════════════════════════════════════════════════════════════════
# Search
# ═══════════════════════════════════════════════════════════════════════


class TestSearch:
    def test_exact_match_returns_similarity_one(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0], content="A"))
        results = store.search([1.0, 0.0], limit=5)
        assert len(results) == 1
        assert results[0].chunk.content == "A"
        assert results[0].similarity == 1.0

    def test_results_sorted_thresholded_and_limited(self, store: InMemoryVectorStore) -> None:
        vectors = {
            "low": [0.5, 0.5],  # ~0.707
            "high": [1.0, 0.05],
            "mid": [0.8, 0.3],
            "orthogonal": [0.0, 1.0],
            "opposite": [-1.0, 0.0],
        }
        for chunk_id, vector in vectors.items():
            store.add_chunk(make_chunk(chunk_id, vector))

        results = store.search([1.0, 0.0], limit=2)

        assert [r.chunk.id for r in results] == ["high", "mid"]
        similarities = [r.similarity for r in store.search([1.0, 0.0], limit=10)]
        assert similarities == sorted(similarities, reverse=True)
        assert all(0.7 <= s <= 1.0 for s in similarities)
        assert len(similarities) == 3

    def test_ties_keep_insertion_order(self, store: InMemoryVectorStore) -> None:
        for chunk_id in ("first", "second", "third"):
            store.add_chunk(make_chunk(chunk_id, [2.0, 0.0]))
        assert [r.chunk.id for r in store.search([1.0, 0.0])] == ["first", "second", "third"]

    def test_noise_floor_applies_even_with_low_threshold(self, storage: InMemoryKeyValueStore, clock: FrozenClock) -> None:
        store = InMemoryVectorStore(storage, similarity_threshold=0.0, noise_floor=0.1, clock=clock)
        store.initialize()
        store.add_chunk(make_chunk("weak", [1.0, 10.0]))  # ~0.0995
        store.add_chunk(make_chunk("ok", [1.0, 1.0]))
        assert [r.chunk.id for r in store.search([1.0, 0.0])] == ["ok"]

    def test_wrong_dimension_raises(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        with pytest.raises(DimensionMismatch):
            store.search([1.0, 0.0, 0.0])
        with pytest.raises(DimensionMismatch):
            store.search([1.0])

    def test_empty_store_returns_nothing(self, store: InMemoryVectorStore) -> None:
        assert store.search([1.0, 0.0, 0.0]) == []

    def test_zero_limit(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        assert store.search([1.0, 0.0], limit=0) == []


# ═══════════════════════════════════════════════════════════════════════
# Writes
# ═══════════════════════════════════════════════════════════════════════


class TestWrites:
    def test_add_chunk_overwrites_by_id(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0], content="old"))
        store.add_chunk(make_chunk("a", [1.0, 0.0], content="new"))
        assert store.chunk_count == 1
        assert store.chunks()[0].content == "new"

    def test_mixed_dimensions_rejected(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        with pytest.raises(DimensionMismatch):
            store.add_chunk(make_chunk("b", [1.0, 0.0, 0.0]))
        assert store.chunk_count == 1

    def test_remove_chunks_by_source(self, store: InMemoryVectorStore) -> None:
        for i in range(3):
            store.add_chunk(make_chunk(f"d1_{i}", [1.0, 0.0], source="doc1"))
        for i in range(2):
            store.add_chunk(make_chunk(f"d2_{i}", [1.0, 0.0], source="doc2"))

        removed = store.remove_chunks_by_source("doc1")

        assert removed == 3
        assert store.chunk_count == 2
        assert {c.source for c in store.chunks()} == {"doc2"}
        assert store.count_by_source("doc1") == 0

    def test_removing_everything_resets_dimension(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0], source="doc1"))
        store.remove_chunks_by_source("doc1")
        store.add_chunk(make_chunk("b", [1.0, 0.0, 0.0], source="doc2"))
        assert store.chunk_count == 1

    def test_clear_empties_memory_and_snapshot(self, store: InMemoryVectorStore, storage: InMemoryKeyValueStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        store.finalize_batch("fp")
        assert KEY in storage

        store.clear()

        assert store.chunk_count == 0
        assert KEY not in storage


# ═══════════════════════════════════════════════════════════════════════
# Persistence
# ═══════════════════════════════════════════════════════════════════════


class TestPersistence:
    def test_round_trip_restores_identical_chunks(self, storage: InMemoryKeyValueStore, clock: FrozenClock) -> None:
        original = _fresh_store(storage, clock)
        for i in range(4):
            original.add_chunk(make_chunk(f"c{i}", [0.1 * i, 1.0, 0.5], source=f"doc{i % 2}", chunk_index=i))
        original.finalize_batch("fingerprint-1")

        clock.now += timedelta(days=6)
        restored = _fresh_store(storage, clock)

        def key(store: InMemoryVectorStore) -> list[tuple]:
            return [(c.id, c.content, c.embedding, c.source, c.chunk_index) for c in store.chunks()]

        assert key(restored) == key(original)

    def test_expired_snapshot_is_discarded(self, storage: InMemoryKeyValueStore, clock: FrozenClock) -> None:
        original = _fresh_store(storage, clock)
        original.add_chunk(make_chunk("a", [1.0, 0.0]))
        original.finalize_batch("fp")

        clock.now += timedelta(days=8)
        restored = _fresh_store(storage, clock)

        assert restored.chunk_count == 0
        assert KEY not in storage

    def test_schema_mismatch_is_discarded(self, storage: InMemoryKeyValueStore, clock: FrozenClock) -> None:
        snapshot = StoreSnapshot(chunks=[make_chunk("a", [1.0, 0.0])], fingerprint="fp", saved_at=clock.now)
        payload = json.loads(snapshot.model_dump_json())
        payload["schema_version"] = "0.9.0"
        storage.set(KEY, json.dumps(payload))

        restored = _fresh_store(storage, clock)

        assert restored.chunk_count == 0
        assert KEY not in storage

    def test_malformed_snapshot_is_discarded(self, storage: InMemoryKeyValueStore, clock: FrozenClock) -> None:
        storage.set(KEY, "{not json")
        restored = _fresh_store(storage, clock)
        assert restored.chunk_count == 0
        assert KEY not in storage

    def test_initialize_is_idempotent(self, storage: InMemoryKeyValueStore, clock: FrozenClock) -> None:
        store = _fresh_store(storage, clock)
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        store.initialize()
        assert store.chunk_count == 1

    def test_finalize_batch_swallows_persistence_errors(
        self, clock: FrozenClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        storage = MagicMock(spec=KeyValueStore)
        storage.get.return_value = None
        storage.set.side_effect = PersistenceError("disk full")
        store = _fresh_store(storage, clock)
        store.add_chunk(make_chunk("a", [1.0, 0.0]))

        with caplog.at_level(logging.ERROR):
            store.finalize_batch("fp")

        assert store.chunk_count == 1
        assert "Error saving snapshot" in caplog.text

    def test_finalize_batch_swallows_unexpected_backend_errors(self, clock: FrozenClock) -> None:
        storage = MagicMock(spec=KeyValueStore)
        storage.get.return_value = None
        storage.set.side_effect = RuntimeError("backend went away")
        store = _fresh_store(storage, clock)
        store.add_chunk(make_chunk("a", [1.0, 0.0]))

        store.finalize_batch("fp")

        assert store.chunk_count == 1

    def test_unreadable_storage_starts_empty(self, clock: FrozenClock) -> None:
        storage = MagicMock(spec=KeyValueStore)
        storage.get.side_effect = PersistenceError("permission denied")
        store = _fresh_store(storage, clock)
        assert store.chunk_count == 0
        assert store.health_check() is True


# ═══════════════════════════════════════════════════════════════════════
# Update check
# ═══════════════════════════════════════════════════════════════════════


class TestCheckIfUpdateNeeded:
    def test_empty_store_needs_update(self, store: InMemoryVectorStore) -> None:
        check = store.check_if_update_needed("fp")
        assert check.needs_update is True
        assert check.fingerprint == "fp"

    def test_missing_snapshot_needs_update(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        assert store.check_if_update_needed("fp").needs_update is True

    def test_changed_fingerprint_needs_update(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        store.finalize_batch("old")
        assert store.check_if_update_needed("new").needs_update is True

    def test_repeated_checks_after_persist_are_stable(self, store: InMemoryVectorStore) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        store.finalize_batch("fp")
        assert store.check_if_update_needed("fp").needs_update is False
        assert store.check_if_update_needed("fp").needs_update is False

    def test_snapshot_older_than_refresh_window_needs_update(
        self, store: InMemoryVectorStore, clock: FrozenClock
    ) -> None:
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        store.finalize_batch("fp")
        clock.now += timedelta(hours=2)
        assert store.check_if_update_needed("fp").needs_update is True


# ═══════════════════════════════════════════════════════════════════════
# File backend
# ═══════════════════════════════════════════════════════════════════════


class TestFileKeyValueStore:
    def test_set_get_delete(self, tmp_path: Path) -> None:
        kv = FileKeyValueStore(tmp_path / "storage")
        assert kv.get(KEY) is None
        kv.set(KEY, '{"a": 1}')
        assert kv.get(KEY) == '{"a": 1}'
        assert (tmp_path / "storage" / f"{KEY}.json").is_file()
        kv.delete(KEY)
        assert kv.get(KEY) is None
        kv.delete(KEY)

    def test_rejects_path_like_keys(self, tmp_path: Path) -> None:
        kv = FileKeyValueStore(tmp_path)
        with pytest.raises(PersistenceError):
            kv.set("../escape", "x")

    def test_store_round_trip_through_files(self, tmp_path: Path, clock: FrozenClock) -> None:
        store = _fresh_store(FileKeyValueStore(tmp_path), clock)
        store.add_chunk(make_chunk("a", [1.0, 0.0]))
        store.finalize_batch("fp")

        restored = _fresh_store(FileKeyValueStore(tmp_path), clock)

        assert [c.id for c in restored.chunks()] == ["a"]
        assert restored.check_if_update_needed("fp").needs_update is False

    def test_undecodable_file_raises_persistence_error(self, tmp_path: Path) -> None:
        (tmp_path / f"{KEY}.json").write_bytes(b'{"chunks": [\xff\xfe')
        with pytest.raises(PersistenceError):
            FileKeyValueStore(tmp_path).get(KEY)

    def test_undecodable_snapshot_starts_empty(self, tmp_path: Path, clock: FrozenClock) -> None:
        (tmp_path / f"{KEY}.json").write_bytes(b'{"chunks": [\xff\xfe')

        store = _fresh_store(FileKeyValueStore(tmp_path), clock)

        assert store.chunk_count == 0
        assert store.check_if_update_needed("fp").needs_update is True
