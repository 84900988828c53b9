"""Unit tests for the RAGAssistant application root."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import FakeCompletion, FakeDocumentSource, FakeEmbedder
from orchestrated_rag.agent.graph import QueryOrchestrator
from orchestrated_rag.agent.nodes import QueryNodes
from orchestrated_rag.agent.state import QueryStep, ReasoningState, ResponseMode
from orchestrated_rag.assistant import MISSING_API_KEY_MESSAGE, KnowledgeBaseStatus, RAGAssistant
from orchestrated_rag.config import Settings
from orchestrated_rag.errors import TransientProviderError
from orchestrated_rag.ingestion.pipeline import IngestionPipeline
from orchestrated_rag.ingestion.source import DirectoryDocumentSource, HttpDocumentSource
from orchestrated_rag.retrieval.memory_store import InMemoryVectorStore
from orchestrated_rag.retrieval.retriever import SemanticRetriever

DOCUMENT = (
    "Quarterly access reviews confirm that every account still needs its permissions.\n\n"
    "Managers approve or revoke access within five business days of the review."
).encode()


def _assistant(
    store: InMemoryVectorStore,
    completion: FakeCompletion,
    *,
    embedder: FakeEmbedder | None = None,
    source: FakeDocumentSource | None = None,
    conversation_turns: int = 5,
) -> RAGAssistant:
    embedder = embedder or FakeEmbedder()
    pipeline = IngestionPipeline(
        store,
        embedder,
        source or FakeDocumentSource({"access.txt": DOCUMENT}),
        embedding_delay=0,
    )
    nodes = QueryNodes(completion, SemanticRetriever(store, embedder))
    return RAGAssistant(
        store=store,
        pipeline=pipeline,
        orchestrator=QueryOrchestrator(nodes),
        embedder=embedder,
        completion=completion,
        conversation_turns=conversation_turns,
    )


class GatedCompletion(FakeCompletion):
    """Holds the first answer back until ``release`` is set."""

    def __init__(self, *responses: str) -> None:
        super().__init__(*responses)
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self._gated = True

    async def complete(self, messages, **kwargs):  # type: ignore[override]
        result = await super().complete(messages, **kwargs)
        if self._gated:
            self._gated = False
            self.started.set()
            await self.release.wait()
        return result


# ═══════════════════════════════════════════════════════════════════════
# Knowledge base
# ═══════════════════════════════════════════════════════════════════════


class TestInitialize:
    @pytest.mark.asyncio
    async def test_loads_documents(self, store: InMemoryVectorStore) -> None:
        assistant = _assistant(store, FakeCompletion())

        documents = await assistant.initialize()

        assert [d.name for d in documents] == ["access.txt"]
        assert assistant.documents == documents
        assert assistant.status == KnowledgeBaseStatus.CONNECTED
        assert store.chunk_count == 2
        assert assistant.error is None

    @pytest.mark.asyncio
    async def test_repeated_initialize_is_a_no_op(self, store: InMemoryVectorStore) -> None:
        source = FakeDocumentSource({"access.txt": DOCUMENT})
        assistant = _assistant(store, FakeCompletion(), source=source)

        await assistant.initialize()
        await assistant.initialize()

        assert source.fetched == ["access.txt"]

    @pytest.mark.asyncio
    async def test_failure_sets_error_state(self, store: InMemoryVectorStore) -> None:
        assistant = _assistant(store, FakeCompletion(), source=FakeDocumentSource({}, manifest=["gone.pdf"]))

        documents = await assistant.initialize()

        assert documents == []
        assert assistant.status == KnowledgeBaseStatus.ERROR
        assert assistant.error == "No documents were loaded from the knowledge base"
        assert assistant.is_loading is False


# ═══════════════════════════════════════════════════════════════════════
# Conversation
# ═══════════════════════════════════════════════════════════════════════


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_appends_user_and_assistant_turns(self, store: InMemoryVectorStore) -> None:
        assistant = _assistant(store, FakeCompletion("Review access every quarter."))
        await assistant.initialize()
        updates: list[ReasoningState] = []

        reply = await assistant.send_message("  How often?  ", on_update=updates.append)

        assert reply is not None
        assert reply.content == "Review access every quarter."
        assert reply.response_mode == ResponseMode.QUICK
        assert [(m.role, m.content) for m in assistant.messages] == [
            ("user", "How often?"),
            ("assistant", "Review access every quarter."),
        ]
        assert [c.source for c in reply.citations] == ["access.txt", "access.txt"]
        assert updates[-1].current_step == QueryStep.COMPLETE
        assert assistant.reasoning == updates[-1]
        assert assistant.is_loading is False

    @pytest.mark.asyncio
    async def test_blank_message_is_ignored(self, store: InMemoryVectorStore) -> None:
        assistant = _assistant(store, FakeCompletion())
        assert await assistant.send_message("   ") is None
        assert assistant.messages == []

    @pytest.mark.asyncio
    async def test_missing_credential_sets_error(self, store: InMemoryVectorStore) -> None:
        completion = FakeCompletion("unused", api_key="")
        assistant = _assistant(store, completion)

        assert await assistant.send_message("hello") is None

        assert assistant.error == MISSING_API_KEY_MESSAGE
        assert assistant.messages == []
        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_update_api_key_clears_credential_error(self, store: InMemoryVectorStore) -> None:
        embedder = FakeEmbedder(api_key="")
        completion = FakeCompletion("Hi.", api_key="")
        assistant = _assistant(store, completion, embedder=embedder)
        await assistant.send_message("hello")

        assistant.update_api_key("sk-new")

        assert assistant.error is None
        assert embedder.api_key == "sk-new"
        assert completion.api_key == "sk-new"
        assert (await assistant.send_message("hello")) is not None

    @pytest.mark.asyncio
    async def test_answer_failure_becomes_error_state(self, store: InMemoryVectorStore) -> None:
        assistant = _assistant(store, FakeCompletion(TransientProviderError("Failed to generate completion")))

        assert await assistant.send_message("What is MFA?") is None

        assert assistant.error == "Failed to generate completion"
        assert [m.role for m in assistant.messages] == ["user"]
        assert assistant.is_loading is False

    @pytest.mark.asyncio
    async def test_history_window_is_bounded(self, store: InMemoryVectorStore) -> None:
        completion = FakeCompletion("a1", "a2", "a3")
        assistant = _assistant(store, completion, conversation_turns=1)

        await assistant.send_message("q1")
        await assistant.send_message("q2")
        await assistant.send_message("q3")

        sent = [m.content for m in completion.calls[-1]["messages"][1:]]
        assert sent == ["q2", "a2", "q3"]

    @pytest.mark.asyncio
    async def test_response_mode_is_recorded_on_reply(self, store: InMemoryVectorStore) -> None:
        completion = FakeCompletion("Manual.")
        assistant = _assistant(store, completion)
        assistant.set_response_mode("detailed")

        reply = await assistant.send_message("What is MFA?")

        assert reply is not None
        assert reply.response_mode == ResponseMode.DETAILED
        assert completion.calls[0]["max_tokens"] == 4000

    def test_invalid_response_mode_rejected(self, store: InMemoryVectorStore) -> None:
        with pytest.raises(ValueError):
            _assistant(store, FakeCompletion()).set_response_mode("verbose")


class TestSupersededQueries:
    @pytest.mark.asyncio
    async def test_newer_query_wins(self, store: InMemoryVectorStore) -> None:
        completion = GatedCompletion("late answer", "fresh answer")
        assistant = _assistant(store, completion)

        first = asyncio.create_task(assistant.send_message("first question"))
        await completion.started.wait()
        second = await assistant.send_message("second question")
        completion.release.set()
        late = await first

        assert late is None
        assert second is not None and second.content == "fresh answer"
        assert [(m.role, m.content) for m in assistant.messages] == [
            ("user", "first question"),
            ("user", "second question"),
            ("assistant", "fresh answer"),
        ]
        assert assistant.reasoning is not None
        assert assistant.reasoning.original_query == "second question"

    @pytest.mark.asyncio
    async def test_clear_conversation_discards_in_flight_answer(self, store: InMemoryVectorStore) -> None:
        completion = GatedCompletion("late answer")
        assistant = _assistant(store, completion)

        task = asyncio.create_task(assistant.send_message("question"))
        await completion.started.wait()
        assistant.clear_conversation()
        completion.release.set()

        assert await task is None
        assert assistant.messages == []
        assert assistant.reasoning is None


# ═══════════════════════════════════════════════════════════════════════
# Settings and wiring
# ═══════════════════════════════════════════════════════════════════════


class TestWiring:
    @pytest.mark.asyncio
    async def test_connection_check_delegates(self, store: InMemoryVectorStore) -> None:
        completion = FakeCompletion()
        assistant = _assistant(store, completion)
        assert await assistant.test_connection() is True
        completion.connected = False
        assert await assistant.test_connection() is False

    def test_from_settings_uses_directory_source(self, tmp_path: Path) -> None:
        settings = Settings(
            openai_api_key="sk-1",
            storage_dir=str(tmp_path / "storage"),
            documents_dir=str(tmp_path / "docs"),
            response_mode="detailed",
            conversation_turns=3,
            _env_file=None,
        )
        assistant = RAGAssistant.from_settings(settings)

        assert isinstance(assistant.pipeline.source, DirectoryDocumentSource)
        assert assistant.response_mode == ResponseMode.DETAILED
        assert assistant.conversation_turns == 3
        assert assistant.completion.has_credentials

    def test_from_settings_prefers_http_source(self, tmp_path: Path) -> None:
        settings = Settings(
            storage_dir=str(tmp_path),
            documents_base_url="https://kb.example/documents",
            _env_file=None,
        )
        assistant = RAGAssistant.from_settings(settings)
        assert isinstance(assistant.pipeline.source, HttpDocumentSource)
        assert assistant.pipeline.source.base_url == "https://kb.example/documents"
