"""Graph nodes — each method is one step in the query workflow.

Node contract
-------------
* Accepts the full :class:`QueryState` dict (plus the run config, which
  carries the optional ``on_update`` callback under ``configurable``).
* Returns a *partial* dict with **only the keys that changed**.
* Collaborators (completion provider, retriever) are injected through
  :class:`QueryNodes` so every node is independently testable.

Failure policy
--------------
``plan`` never fails: a bad decomposition degrades to the original query.
``retrieve`` and ``synthesize`` catch everything and set ``fallback`` so
the graph reroutes to ``simple_answer``.  ``simple_answer`` lets errors
propagate to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

from langchain_core.runnables import RunnableConfig

from orchestrated_rag.agent.llm import CompletionProvider
from orchestrated_rag.agent.prompts import (
    DECOMPOSITION_MAX_TOKENS,
    DECOMPOSITION_TEMPERATURE,
    MAX_SUBTOPICS,
    build_context,
    build_decomposition_prompt,
    build_subtopic_context,
    get_prompt_strategy,
)
from orchestrated_rag.agent.routing import route_query
from orchestrated_rag.agent.state import (
    ChunkHit,
    QueryRoute,
    QueryState,
    QueryStep,
    ReasoningState,
    ReasoningStep,
    SourceCitation,
    SubtopicResult,
    SubtopicStatus,
)
from orchestrated_rag.errors import ConfigurationError, DecompositionParseError
from orchestrated_rag.retrieval.models import RetrievalResult
from orchestrated_rag.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[ReasoningState], "Awaitable[None] | None"]

EXCERPT_CHARS = 200


class QueryNodes:
    """Bound node implementations sharing one set of collaborators.

    Parameters
    ----------
    completion:
        Chat-completion provider.
    retriever:
        Semantic retriever over the vector store.
    retrieval_count:
        Passages requested by the simple path; split across subtopics on
        the compound path.
    temperature:
        Sampling temperature for answer generation.
    max_tokens:
        Base completion budget; each prompt strategy derives its own limit.
    """

    def __init__(
        self,
        completion: CompletionProvider,
        retriever: SemanticRetriever,
        *,
        retrieval_count: int = 5,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> None:
        self.completion = completion
        self.retriever = retriever
        self.retrieval_count = retrieval_count
        self.temperature = temperature
        self.max_tokens = max_tokens

    # ── 0. CLASSIFY ───────────────────────────────────────────────────

    async def classify(self, state: QueryState) -> dict[str, Any]:
        """Choose the simple or compound path."""
        chunk_count = self.retriever.store.chunk_count
        route = route_query(state["query"], chunk_count)
        step = ReasoningStep(
            node="classify",
            thought=f"Query length {len(state['query'])}, index size {chunk_count}.",
            action=f"Route: {route.value}",
        )
        return {"route": route, "reasoning_trace": [step]}

    # ── 1. PLAN ───────────────────────────────────────────────────────

    async def plan(self, state: QueryState, config: RunnableConfig) -> dict[str, Any]:
        """Decompose the query into focused subtopics."""
        query = state["query"]
        await self._emit(config, self._reasoning(state, QueryStep.PLANNING))

        tokens = 0
        try:
            completion = await self.completion.complete(
                build_decomposition_prompt(query),
                temperature=DECOMPOSITION_TEMPERATURE,
                max_tokens=DECOMPOSITION_MAX_TOKENS,
            )
            tokens = completion.tokens_used
            subtopics = parse_subtopics(completion.text)
            thought = f"Decomposed the query into {len(subtopics)} subtopic(s)."
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.warning("Query decomposition failed, researching the original query: %s", exc)
            subtopics = [query]
            thought = "Decomposition failed; using the original query as the only subtopic."

        update: dict[str, Any] = {
            "step": QueryStep.PLANNING,
            "subtopics": subtopics,
            "subtopic_results": [SubtopicResult(subtopic=s) for s in subtopics],
            "tokens_used": state.get("tokens_used", 0) + tokens,
            "reasoning_trace": [ReasoningStep(node="plan", thought=thought, action="Research subtopics")],
        }
        reasoning = self._reasoning({**state, **update}, QueryStep.PLANNING)
        await self._emit(config, reasoning)
        update["reasoning"] = reasoning
        return update

    # ── 2. RETRIEVE ───────────────────────────────────────────────────

    async def retrieve(self, state: QueryState, config: RunnableConfig) -> dict[str, Any]:
        """Search every subtopic concurrently."""
        try:
            return await self._retrieve(state, config)
        except Exception as exc:
            logger.exception("Subtopic retrieval failed, falling back to the simple path")
            return self._fallback("retrieve", exc)

    async def _retrieve(self, state: QueryState, config: RunnableConfig) -> dict[str, Any]:
        subtopics = state["subtopics"]
        limit = math.ceil(self.retrieval_count / len(subtopics)) + 1
        results = [SubtopicResult(subtopic=s, status=SubtopicStatus.PROCESSING) for s in subtopics]
        await self._emit(config, self._reasoning({**state, "subtopic_results": results}, QueryStep.RETRIEVING))

        async def research(index: int) -> list[RetrievalResult]:
            subtopic = subtopics[index]
            hits = await self._search_subtopic(subtopic, limit)
            results[index] = SubtopicResult(
                subtopic=subtopic,
                chunks=[ChunkHit.from_result(hit) for hit in hits],
                status=SubtopicStatus.COMPLETE,
            )
            await self._emit(config, self._reasoning({**state, "subtopic_results": results}, QueryStep.RETRIEVING))
            return hits

        passages = await asyncio.gather(*(research(i) for i in range(len(subtopics))))
        retrieved = [hit for hits in passages for hit in hits]

        step = ReasoningStep(
            node="retrieve",
            thought=f"Searching {len(subtopics)} subtopic(s), up to {limit} passage(s) each.",
            action="Run searches",
            observation="; ".join(f"{s!r} → {len(h)}" for s, h in zip(subtopics, passages)),
        )
        return {
            "step": QueryStep.RETRIEVING,
            "subtopic_results": results,
            "retrieved": retrieved,
            "reasoning_trace": [step],
        }

    async def _search_subtopic(self, subtopic: str, limit: int) -> list[RetrievalResult]:
        try:
            return await self.retriever.search(subtopic, k=limit, subtopic=subtopic)
        except Exception:
            logger.exception("Search failed for subtopic %r", subtopic)
            return []

    # ── 3. SYNTHESIZE ─────────────────────────────────────────────────

    async def synthesize(self, state: QueryState, config: RunnableConfig) -> dict[str, Any]:
        """Answer from the merged, subtopic-grouped context."""
        try:
            return await self._synthesize(state, config)
        except Exception as exc:
            logger.exception("Synthesis failed, falling back to the simple path")
            return self._fallback("synthesize", exc)

    async def _synthesize(self, state: QueryState, config: RunnableConfig) -> dict[str, Any]:
        query = state["query"]
        subtopic_results = state["subtopic_results"]
        context = build_subtopic_context(subtopic_results)
        synthesis_context = (
            f"Synthesized from {len(subtopic_results)} subtopic(s) "
            f"and {len(state.get('retrieved', []))} passage(s)"
        )
        await self._emit(
            config,
            self._reasoning({**state, "synthesis_context": synthesis_context}, QueryStep.SYNTHESIZING),
        )

        strategy = get_prompt_strategy(state["response_mode"])
        completion = await self.completion.complete(
            strategy.build_synthesis_prompt(query, context, state.get("history", [])),
            temperature=self.temperature,
            max_tokens=strategy.token_budget(self.max_tokens),
        )
        step = ReasoningStep(
            node="synthesize",
            thought=synthesis_context,
            action=f"Generate {strategy.mode.value} answer",
            observation=f"Answer length: {len(completion.text)} chars.",
        )
        return {
            "step": QueryStep.SYNTHESIZING,
            "context": context,
            "synthesis_context": synthesis_context,
            "answer": completion.text,
            "tokens_used": state.get("tokens_used", 0) + completion.tokens_used,
            "reasoning_trace": [step],
        }

    # ── 4. SIMPLE ANSWER ──────────────────────────────────────────────

    async def simple_answer(self, state: QueryState, config: RunnableConfig) -> dict[str, Any]:
        """One search, one completion.  Errors propagate."""
        query = state["query"]
        base: dict[str, Any] = {**state, "subtopics": [], "subtopic_results": [], "retrieved": []}
        await self._emit(config, self._reasoning(base, QueryStep.RETRIEVING))

        retrieved = await self.retriever.search(query, k=self.retrieval_count)
        context = build_context(retrieved)
        await self._emit(config, self._reasoning({**base, "retrieved": retrieved}, QueryStep.SYNTHESIZING))

        strategy = get_prompt_strategy(state["response_mode"])
        completion = await self.completion.complete(
            strategy.build_answer_prompt(query, context, state.get("history", [])),
            temperature=self.temperature,
            max_tokens=strategy.token_budget(self.max_tokens),
        )
        step = ReasoningStep(
            node="simple_answer",
            thought="Answering from a single search" + (" after fallback." if state.get("fallback") else "."),
            action=f"Generate {strategy.mode.value} answer",
            observation=f"{len(retrieved)} passage(s); answer length {len(completion.text)} chars.",
        )
        return {
            "step": QueryStep.SYNTHESIZING,
            "subtopics": [],
            "subtopic_results": [],
            "retrieved": retrieved,
            "context": context,
            "synthesis_context": f"Answered from {len(retrieved)} passage(s)",
            "answer": completion.text,
            "tokens_used": state.get("tokens_used", 0) + completion.tokens_used,
            "reasoning_trace": [step],
        }

    # ── 5. COMPLETE ───────────────────────────────────────────────────

    async def complete(self, state: QueryState, config: RunnableConfig) -> dict[str, Any]:
        """Attach citations and publish the final reasoning state."""
        citations = build_citations(state.get("retrieved", []))
        update: dict[str, Any] = {
            "step": QueryStep.COMPLETE,
            "citations": citations,
            "reasoning_trace": [
                ReasoningStep(
                    node="complete",
                    thought=f"{len(citations)} citation(s) attached.",
                )
            ],
        }
        reasoning = self._reasoning({**state, **update}, QueryStep.COMPLETE)
        await self._emit(config, reasoning)
        update["reasoning"] = reasoning
        return update

    # ── Internal helpers ──────────────────────────────────────────────

    def _fallback(self, node: str, exc: Exception) -> dict[str, Any]:
        return {
            "fallback": True,
            "error": str(exc) or type(exc).__name__,
            "reasoning_trace": [
                ReasoningStep(
                    node=node,
                    thought=f"Compound path failed: {exc}",
                    action="Fall back to simple answer",
                )
            ],
        }

    def _reasoning(self, state: dict[str, Any], step: QueryStep) -> ReasoningState:
        """Build the outward-facing view of *state*."""
        results: list[SubtopicResult] = list(state.get("subtopic_results", []))
        started_at = state.get("started_at")
        return ReasoningState(
            original_query=state["query"],
            current_step=step,
            orchestration_mode=state.get("route") == QueryRoute.COMPOUND and not state.get("fallback", False),
            subtopics=list(state.get("subtopics", [])),
            processing_subtopics=[r.subtopic for r in results if r.status == SubtopicStatus.PROCESSING],
            completed_subtopics=[r.subtopic for r in results if r.status == SubtopicStatus.COMPLETE],
            subtopic_results=[r.model_copy(deep=True) for r in results],
            retrieved_chunks=[
                ChunkHit.from_result(r, excerpt_chars=EXCERPT_CHARS) for r in state.get("retrieved", [])
            ],
            synthesis_context=state.get("synthesis_context", ""),
            processing_time=time.monotonic() - started_at if started_at is not None else 0.0,
            tokens_used=state.get("tokens_used", 0),
            model=self.completion.model,
            error=state.get("error") or None,
        )

    @staticmethod
    async def _emit(config: RunnableConfig | None, reasoning: ReasoningState) -> None:
        callback: UpdateCallback | None = (config or {}).get("configurable", {}).get("on_update")
        if callback is None:
            return
        result = callback(reasoning)
        if inspect.isawaitable(result):
            await result


# ── Routing (conditional edges) ───────────────────────────────────────


def select_path(state: QueryState) -> str:
    """Conditional edge after ``classify``."""
    if state.get("route") == QueryRoute.COMPOUND:
        return "plan"
    return "simple_answer"


def after_retrieve(state: QueryState) -> str:
    if state.get("fallback", False):
        return "simple_answer"
    return "synthesize"


def after_synthesize(state: QueryState) -> str:
    if state.get("fallback", False):
        return "simple_answer"
    return "complete"


# ── Helpers ───────────────────────────────────────────────────────────


def parse_subtopics(text: str, *, max_subtopics: int = MAX_SUBTOPICS) -> list[str]:
    """Parse a decomposition response into at most *max_subtopics* strings.

    LLMs occasionally wrap JSON in markdown fences; those are stripped
    before parsing.

    Raises
    ------
    DecompositionParseError
        When the text is not a non-empty JSON array of strings.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.index("\n") if "\n" in cleaned else 3
        cleaned = cleaned[first_newline + 1 :]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        cleaned = cleaned.strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise DecompositionParseError("Decomposition is not valid JSON", {"response": text[:200]}) from exc

    if not isinstance(parsed, list):
        raise DecompositionParseError("Decomposition is not a JSON array", {"response": text[:200]})
    subtopics = [item.strip() for item in parsed if isinstance(item, str) and item.strip()]
    if not subtopics:
        raise DecompositionParseError("Decomposition contains no subtopics", {"response": text[:200]})
    return subtopics[:max_subtopics]


def build_citations(retrieved: list[RetrievalResult]) -> list[SourceCitation]:
    """One citation per distinct consulted chunk, in context order."""
    citations: list[SourceCitation] = []
    seen: set[str] = set()
    for result in retrieved:
        key = result.citation.document_id or result.citation.citation_id
        if key in seen:
            continue
        seen.add(key)
        citations.append(
            SourceCitation(
                citation_id=f"[{len(citations) + 1}]",
                source=result.citation.source,
                chunk_index=result.citation.chunk_index,
                score=result.citation.score,
                excerpt=result.content[:EXCERPT_CHARS],
                subtopic=result.citation.metadata.get("subtopic"),
            )
        )
    return citations
