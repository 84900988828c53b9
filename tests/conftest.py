"""Shared pytest configuration, fakes and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest
from langchain_core.messages import BaseMessage

from orchestrated_rag.agent.llm import Completion
from orchestrated_rag.errors import ConfigurationError, TransientProviderError
from orchestrated_rag.ingestion.source import DocumentSource
from orchestrated_rag.retrieval.memory_store import InMemoryVectorStore
from orchestrated_rag.retrieval.models import Chunk
from orchestrated_rag.retrieval.snapshot import InMemoryKeyValueStore


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ──────────────────────────────────────────────────────────────


class FakeEmbedder:
    """Returns canned vectors; texts not in *vectors* get *default*."""

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        *,
        default: list[float] | None = None,
        fail_on: Callable[[str], bool] | None = None,
        api_key: str = "sk-test",
    ) -> None:
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0]
        self.fail_on = fail_on
        self.api_key = api_key
        self.calls: list[str] = []

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    def update_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if not self.api_key:
            raise ConfigurationError("OpenAI API key is required")
        if self.fail_on is not None and self.fail_on(text):
            raise TransientProviderError("Failed to generate embedding", {"text": text[:20]})
        return list(self.vectors.get(text, self.default))


class FakeCompletion:
    """Replays *responses* in order; an Exception instance is raised instead."""

    def __init__(self, *responses: str | Exception, model: str = "fake-model", api_key: str = "sk-test") -> None:
        self.responses = list(responses)
        self.model = model
        self.api_key = api_key
        self.calls: list[dict[str, Any]] = []
        self.connected = True

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    def update_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    async def complete(
        self,
        messages: list[BaseMessage],
        *,
        temperature: float = 0.0,
        max_tokens: int | None = None,
    ) -> Completion:
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if not self.responses:
            raise AssertionError("FakeCompletion ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return Completion(text=response, tokens_used=10)

    async def test_connection(self) -> bool:
        return self.connected


class FakeDocumentSource(DocumentSource):
    """Serves documents from a dict; a missing name raises ``FileNotFoundError``."""

    def __init__(self, documents: dict[str, bytes], *, manifest: list[str] | None = None) -> None:
        self.documents = documents
        self.manifest = manifest if manifest is not None else list(documents)
        self.fetched: list[str] = []

    async def list_documents(self) -> list[str]:
        return list(self.manifest)

    async def fetch(self, name: str) -> bytes:
        self.fetched.append(name)
        if name not in self.documents:
            raise FileNotFoundError(name)
        return self.documents[name]


class FrozenClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def make_chunk(
    chunk_id: str,
    embedding: list[float],
    *,
    source: str = "doc1",
    content: str | None = None,
    chunk_index: int = 0,
) -> Chunk:
    return Chunk(
        id=chunk_id,
        content=content if content is not None else f"Content of {chunk_id}",
        embedding=embedding,
        source=source,
        chunk_index=chunk_index,
    )


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def storage() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def store(storage: InMemoryKeyValueStore, clock: FrozenClock) -> InMemoryVectorStore:
    vector_store = InMemoryVectorStore(storage, clock=clock)
    vector_store.initialize()
    return vector_store
