"""Application root — builds every component and owns the conversation.

:class:`RAGAssistant` is the caller-facing surface: it loads the knowledge
base, keeps the conversation log, forwards streamed reasoning updates and
turns whole-operation failures into a user-visible ``error`` string.

Only the most recent query may change state.  Every call to
:meth:`RAGAssistant.send_message` takes a new generation number; updates
and answers from an older generation are dropped when they arrive.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal
from uuid import uuid4

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from pydantic import BaseModel, Field

from orchestrated_rag.agent.graph import QueryOrchestrator
from orchestrated_rag.agent.llm import CompletionProvider
from orchestrated_rag.agent.nodes import QueryNodes, UpdateCallback
from orchestrated_rag.agent.state import ReasoningState, ResponseMode, SourceCitation
from orchestrated_rag.config import Settings
from orchestrated_rag.config import settings as default_settings
from orchestrated_rag.errors import RAGError
from orchestrated_rag.ingestion.chunker import Chunker
from orchestrated_rag.ingestion.embedder import EmbeddingProvider
from orchestrated_rag.ingestion.models import DocumentMetadata
from orchestrated_rag.ingestion.pipeline import IngestionPipeline
from orchestrated_rag.ingestion.source import DirectoryDocumentSource, DocumentSource, HttpDocumentSource
from orchestrated_rag.retrieval.base import VectorStoreBase
from orchestrated_rag.retrieval.memory_store import InMemoryVectorStore
from orchestrated_rag.retrieval.retriever import SemanticRetriever
from orchestrated_rag.retrieval.snapshot import FileKeyValueStore

logger = logging.getLogger(__name__)

MISSING_API_KEY_MESSAGE = "Please configure your OpenAI API key to use the chat."


class KnowledgeBaseStatus(str, Enum):
    DISCONNECTED = "disconnected"
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    ERROR = "error"


class ChatMessage(BaseModel):
    """One entry of the conversation log."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    response_mode: ResponseMode | None = None
    citations: list[SourceCitation] = Field(default_factory=list)

    def to_langchain(self) -> BaseMessage:
        if self.role == "user":
            return HumanMessage(content=self.content)
        return AIMessage(content=self.content)


class RAGAssistant:
    """Conversation front-end over ingestion and query orchestration.

    Parameters
    ----------
    store:
        Vector store shared by ingestion and retrieval.
    pipeline:
        Ingestion pipeline that fills *store*.
    orchestrator:
        Runs each query through the graph.
    embedder / completion:
        Providers whose credential :meth:`update_api_key` replaces.
    conversation_turns:
        Number of user/assistant exchanges sent as history.
    response_mode:
        Initial answer style.
    """

    def __init__(
        self,
        *,
        store: VectorStoreBase,
        pipeline: IngestionPipeline,
        orchestrator: QueryOrchestrator,
        embedder: EmbeddingProvider,
        completion: CompletionProvider,
        conversation_turns: int = 5,
        response_mode: ResponseMode = ResponseMode.QUICK,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.orchestrator = orchestrator
        self.embedder = embedder
        self.completion = completion
        self.conversation_turns = conversation_turns
        self.response_mode = ResponseMode(response_mode)

        self.status = KnowledgeBaseStatus.DISCONNECTED
        self.is_loading = False
        self._messages: list[ChatMessage] = []
        self._documents: list[DocumentMetadata] = []
        self._reasoning: ReasoningState | None = None
        self._error: str | None = None
        self._generation = 0
        self._init_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        source: DocumentSource | None = None,
    ) -> RAGAssistant:
        """Wire every component from *settings* (defaults to the env settings)."""
        settings = settings or default_settings

        store = InMemoryVectorStore(
            FileKeyValueStore(settings.storage_dir),
            storage_key=settings.storage_key,
            similarity_threshold=settings.similarity_threshold,
            noise_floor=settings.noise_floor,
            max_age=timedelta(days=settings.snapshot_max_age_days),
            refresh_window=timedelta(seconds=settings.snapshot_refresh_window_seconds),
        )
        embedder = EmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            base_url=settings.openai_base_url,
            timeout=settings.request_timeout,
        )
        completion = CompletionProvider(
            api_key=settings.openai_api_key,
            model=settings.llm_model_name,
            base_url=settings.openai_base_url,
            timeout=settings.request_timeout,
        )
        if source is None:
            if settings.documents_base_url:
                source = HttpDocumentSource(settings.documents_base_url, timeout=settings.request_timeout)
            else:
                source = DirectoryDocumentSource(settings.documents_dir)

        pipeline = IngestionPipeline(
            store,
            embedder,
            source,
            chunker=Chunker(settings.chunk_size, settings.min_chunk_length),
            embedding_delay=settings.embedding_delay_seconds,
            fallback_documents=settings.fallback_documents,
        )
        nodes = QueryNodes(
            completion,
            SemanticRetriever(store, embedder, default_k=settings.retrieval_count),
            retrieval_count=settings.retrieval_count,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
        return cls(
            store=store,
            pipeline=pipeline,
            orchestrator=QueryOrchestrator(nodes),
            embedder=embedder,
            completion=completion,
            conversation_turns=settings.conversation_turns,
            response_mode=ResponseMode(settings.response_mode),
        )

    # -- read-only views --------------------------------------------------------

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def documents(self) -> list[DocumentMetadata]:
        return list(self._documents)

    @property
    def reasoning(self) -> ReasoningState | None:
        return self._reasoning

    @property
    def error(self) -> str | None:
        return self._error

    # -- knowledge base ---------------------------------------------------------

    async def initialize(self) -> list[DocumentMetadata]:
        """Restore or rebuild the knowledge base.

        Safe to call repeatedly; once connected, later calls return the
        loaded documents without touching the store.  Failures are recorded
        in :attr:`error` and the status becomes ``ERROR``.
        """
        async with self._init_lock:
            if self.status == KnowledgeBaseStatus.CONNECTED:
                return self.documents

            self.status = KnowledgeBaseStatus.INITIALIZING
            self.is_loading = True
            self._error = None
            try:
                self.store.initialize()
                self._documents = await self.pipeline.load()
            except RAGError as exc:
                logger.exception("Error initializing knowledge base")
                self._error = exc.message
                self.status = KnowledgeBaseStatus.ERROR
                return []
            finally:
                self.is_loading = False

            self.status = KnowledgeBaseStatus.CONNECTED
            logger.info("Knowledge base initialized with %d chunks", self.store.chunk_count)
            return self.documents

    # -- conversation -----------------------------------------------------------

    async def send_message(self, text: str, on_update: UpdateCallback | None = None) -> ChatMessage | None:
        """Answer *text* and append both turns to the conversation.

        Returns the assistant's reply, or ``None`` when the message was
        empty, failed (see :attr:`error`) or was superseded by a newer one.
        """
        content = text.strip()
        if not content:
            return None
        if not self.completion.has_credentials:
            self._error = MISSING_API_KEY_MESSAGE
            return None

        self._generation += 1
        generation = self._generation
        history = self._history_window()
        mode = self.response_mode

        self._messages.append(ChatMessage(role="user", content=content))
        self._error = None
        self.is_loading = True

        async def relay(reasoning: ReasoningState) -> None:
            if generation != self._generation:
                return
            self._reasoning = reasoning
            if on_update is not None:
                result = on_update(reasoning)
                if inspect.isawaitable(result):
                    await result

        try:
            outcome = await self.orchestrator.run(
                content,
                history=history,
                response_mode=mode,
                on_update=relay,
            )
        except Exception as exc:
            logger.exception("Error sending message")
            if generation == self._generation:
                self._error = exc.message if isinstance(exc, RAGError) else (str(exc) or "Failed to send message")
                self.is_loading = False
            return None

        if generation != self._generation:
            logger.info("Discarding answer to a superseded query")
            return None

        reply = ChatMessage(
            role="assistant",
            content=outcome.answer,
            response_mode=mode,
            citations=outcome.citations,
        )
        self._messages.append(reply)
        self._reasoning = outcome.reasoning
        self.is_loading = False
        return reply

    def clear_conversation(self) -> None:
        """Forget the conversation; an in-flight answer is discarded."""
        self._generation += 1
        self._messages.clear()
        self._reasoning = None
        self._error = None
        self.is_loading = False

    def _history_window(self) -> list[BaseMessage]:
        window = self._messages[-self.conversation_turns * 2 :] if self.conversation_turns > 0 else []
        return [message.to_langchain() for message in window]

    # -- settings ---------------------------------------------------------------

    async def test_connection(self) -> bool:
        return await self.completion.test_connection()

    def update_api_key(self, api_key: str) -> None:
        """Replace the credential; the next outbound call uses it."""
        self.embedder.update_api_key(api_key)
        self.completion.update_api_key(api_key)
        if api_key and self._error == MISSING_API_KEY_MESSAGE:
            self._error = None

    def set_response_mode(self, mode: ResponseMode | str) -> None:
        self.response_mode = ResponseMode(mode)
