"""Query state definition — shared across all graph nodes.

The state is the *single source of truth* that flows through every node
of the query graph.  :class:`ReasoningState` is the separate, outward-facing
view of that state which is streamed to the caller after every step.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, TypedDict

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, Field

from orchestrated_rag.retrieval.models import RetrievalResult


class QueryStep(str, Enum):
    PLANNING = "planning"
    RETRIEVING = "retrieving"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"


class QueryRoute(str, Enum):
    """``simple``: one search, one completion.  ``compound``: decompose first."""

    SIMPLE = "simple"
    COMPOUND = "compound"


class ResponseMode(str, Enum):
    """Answer style; each mode has its own prompt strategy."""

    QUICK = "quick"
    DETAILED = "detailed"


class SubtopicStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Outward-facing models
# ---------------------------------------------------------------------------


class ChunkHit(BaseModel):
    """A retrieved passage as shown to the caller."""

    content: str
    source: str
    similarity: float
    chunk_index: int | None = None

    @classmethod
    def from_result(cls, result: RetrievalResult, *, excerpt_chars: int | None = None) -> ChunkHit:
        content = result.content
        if excerpt_chars is not None and len(content) > excerpt_chars:
            content = content[:excerpt_chars] + "..."
        return cls(
            content=content,
            source=result.citation.source,
            similarity=result.citation.score or 0.0,
            chunk_index=result.citation.chunk_index,
        )


class SubtopicResult(BaseModel):
    """Retrieval outcome for one subtopic of a compound query."""

    subtopic: str
    chunks: list[ChunkHit] = Field(default_factory=list)
    status: SubtopicStatus = SubtopicStatus.PENDING


class ReasoningState(BaseModel):
    """Progress snapshot streamed to the caller after each step."""

    original_query: str = ""
    current_step: QueryStep = QueryStep.PLANNING
    orchestration_mode: bool = False
    subtopics: list[str] = Field(default_factory=list)
    processing_subtopics: list[str] = Field(default_factory=list)
    completed_subtopics: list[str] = Field(default_factory=list)
    subtopic_results: list[SubtopicResult] = Field(default_factory=list)
    retrieved_chunks: list[ChunkHit] = Field(default_factory=list)
    synthesis_context: str = ""
    processing_time: float = 0.0
    tokens_used: int = 0
    model: str = ""
    error: str | None = None


# ---------------------------------------------------------------------------
# Trace and citation records (plain dataclasses)
# ---------------------------------------------------------------------------


@dataclass
class ReasoningStep:
    """One step the orchestrator performed.

    Attributes
    ----------
    node:
        The graph node that produced this step (e.g. ``"plan"``).
    thought:
        What the node decided.
    action:
        What the node did next.
    observation:
        The outcome of that action.
    """

    node: str
    thought: str
    action: str = ""
    observation: str = ""


@dataclass
class SourceCitation:
    """A citation attached to the final answer.

    Attributes
    ----------
    citation_id:
        Short reference id, e.g. ``"[1]"``.
    source:
        Source document name.
    chunk_index:
        Ordinal position of the chunk within the source document.
    score:
        Cosine similarity from the retriever.
    excerpt:
        Leading part of the chunk text.
    subtopic:
        Subtopic the chunk was retrieved for (compound queries only).
    """

    citation_id: str
    source: str
    chunk_index: int | None = None
    score: float | None = None
    excerpt: str = ""
    subtopic: str | None = None


# ---------------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------------


def _append_list(existing: list[Any], new: list[Any]) -> list[Any]:
    """Reducer that appends *new* items to the *existing* list."""
    return existing + new


# ---------------------------------------------------------------------------
# Graph state
# ---------------------------------------------------------------------------


class QueryState(TypedDict):
    """Typed state that flows through the query graph.

    Attributes
    ----------
    query:
        The user's current question.
    history:
        Recent conversation window, oldest first, excluding *query*.
    response_mode:
        Selects the prompt strategy.
    route:
        Simple or compound path, set by the ``classify`` node.
    step:
        Last step reached.
    started_at:
        ``time.monotonic()`` when the query started.
    subtopics:
        Focused subtopics produced by the ``plan`` node.
    subtopic_results:
        Per-subtopic retrieval outcome, in subtopic order.
    retrieved:
        Every passage that will be cited, in context order.
    context:
        The context block handed to the final completion.
    synthesis_context:
        One-line description of what the answer was synthesized from.
    answer:
        The final answer text.
    citations:
        Citations for every consulted chunk.
    tokens_used:
        Tokens consumed by completion calls so far.
    fallback:
        Set when the compound path failed and the simple path must run.
    error:
        Description of the failure that triggered the fallback.
    reasoning:
        The last :class:`ReasoningState` emitted.
    reasoning_trace:
        Ordered :class:`ReasoningStep` log.
    """

    query: str
    history: list[BaseMessage]
    response_mode: ResponseMode
    route: QueryRoute
    step: QueryStep
    started_at: float
    subtopics: list[str]
    subtopic_results: list[SubtopicResult]
    retrieved: list[RetrievalResult]
    context: str
    synthesis_context: str
    answer: str
    citations: list[SourceCitation]
    tokens_used: int
    fallback: bool
    error: str
    reasoning: ReasoningState | None
    reasoning_trace: Annotated[list[ReasoningStep], _append_list]
