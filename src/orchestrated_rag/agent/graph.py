"""LangGraph graph definition — the query orchestration workflow.

This module wires the nodes defined in :mod:`orchestrated_rag.agent.nodes`
into a compiled :class:`StateGraph`:

1. **Classify** the query as simple or compound.
2. **Plan** — decompose a compound query into focused subtopics.
3. **Retrieve** evidence for every subtopic concurrently.
4. **Synthesize** one answer from the grouped evidence.
5. **Complete** — attach citations.

Simple queries (and compound queries whose retrieval or synthesis failed)
take the ``simple_answer`` node instead of steps 2-4.

The graph can be tested without any network access by injecting fake
providers into :class:`QueryNodes` (see tests).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import BaseMessage
from langgraph.graph import END, START, StateGraph

from orchestrated_rag.agent.nodes import (
    QueryNodes,
    UpdateCallback,
    after_retrieve,
    after_synthesize,
    select_path,
)
from orchestrated_rag.agent.state import (
    QueryRoute,
    QueryState,
    QueryStep,
    ReasoningState,
    ReasoningStep,
    ResponseMode,
    SourceCitation,
)

logger = logging.getLogger(__name__)


def build_graph(nodes: QueryNodes):
    """Construct and return the compiled query graph.

    Graph topology::

                 ┌──────────┐
                 │ classify │
                 └────┬─────┘
           compound   │   simple
          ┌───────────┴────────────┐
          ▼                        │
      ┌──────┐                     │
      │ plan │                     │
      └──┬───┘                     │
         ▼                         ▼
     ┌──────────┐  fallback  ┌───────────────┐
     │ retrieve ├───────────►│ simple_answer │
     └────┬─────┘            └───────┬───────┘
          ▼                ▲         │
     ┌────────────┐        │         │
     │ synthesize ├────────┘         │
     └────┬───────┘  fallback        │
          ▼                          │
     ┌──────────┐◄───────────────────┘
     │ complete │
     └────┬─────┘
          ▼
       [ END ]

    Returns
    -------
    CompiledStateGraph
        A compiled LangGraph workflow ready for ``.ainvoke()``.
    """
    workflow = StateGraph(QueryState)

    # -- Nodes ---------------------------------------------------------------
    workflow.add_node("classify", nodes.classify)
    workflow.add_node("plan", nodes.plan)
    workflow.add_node("retrieve", nodes.retrieve)
    workflow.add_node("synthesize", nodes.synthesize)
    workflow.add_node("simple_answer", nodes.simple_answer)
    workflow.add_node("complete", nodes.complete)

    # -- Edges ---------------------------------------------------------------
    workflow.add_edge(START, "classify")
    workflow.add_conditional_edges(
        "classify",
        select_path,
        {"plan": "plan", "simple_answer": "simple_answer"},
    )
    workflow.add_edge("plan", "retrieve")
    workflow.add_conditional_edges(
        "retrieve",
        after_retrieve,
        {"synthesize": "synthesize", "simple_answer": "simple_answer"},
    )
    workflow.add_conditional_edges(
        "synthesize",
        after_synthesize,
        {"complete": "complete", "simple_answer": "simple_answer"},
    )
    workflow.add_edge("simple_answer", "complete")
    workflow.add_edge("complete", END)

    return workflow.compile()


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def create_initial_state(
    query: str,
    *,
    history: Sequence[BaseMessage] = (),
    response_mode: ResponseMode = ResponseMode.QUICK,
) -> dict[str, Any]:
    """Build the initial state dict for ``graph.ainvoke()``.

    Usage::

        graph = build_graph(nodes)
        state = create_initial_state("Compare the two retention policies")
        result = await graph.ainvoke(state)
        print(result["answer"])
    """
    return {
        "query": query,
        "history": list(history),
        "response_mode": ResponseMode(response_mode),
        "route": QueryRoute.SIMPLE,
        "step": QueryStep.PLANNING,
        "started_at": time.monotonic(),
        "subtopics": [],
        "subtopic_results": [],
        "retrieved": [],
        "context": "",
        "synthesis_context": "",
        "answer": "",
        "citations": [],
        "tokens_used": 0,
        "fallback": False,
        "error": "",
        "reasoning": None,
        "reasoning_trace": [],
    }


@dataclass
class QueryOutcome:
    """Final result of one orchestrated query."""

    answer: str
    route: QueryRoute
    reasoning: ReasoningState
    citations: list[SourceCitation] = field(default_factory=list)
    reasoning_trace: list[ReasoningStep] = field(default_factory=list)
    fallback: bool = False


class QueryOrchestrator:
    """Runs queries through the compiled graph.

    Parameters
    ----------
    nodes:
        Node implementations bound to their providers.
    """

    def __init__(self, nodes: QueryNodes) -> None:
        self.nodes = nodes
        self.graph = build_graph(nodes)

    async def run(
        self,
        query: str,
        *,
        history: Sequence[BaseMessage] = (),
        response_mode: ResponseMode = ResponseMode.QUICK,
        on_update: UpdateCallback | None = None,
    ) -> QueryOutcome:
        """Answer *query*, streaming :class:`ReasoningState` to *on_update*.

        Raises whatever the simple path raises; compound-path failures are
        absorbed by the fallback.
        """
        state = create_initial_state(query, history=history, response_mode=response_mode)
        result = await self.graph.ainvoke(state, config={"configurable": {"on_update": on_update}})
        logger.info(
            "Answered query via %s path (fallback=%s, tokens=%d)",
            result["route"].value,
            result["fallback"],
            result["tokens_used"],
        )
        return QueryOutcome(
            answer=result["answer"],
            route=result["route"],
            reasoning=result["reasoning"],
            citations=result["citations"],
            reasoning_trace=result["reasoning_trace"],
            fallback=result["fallback"],
        )
