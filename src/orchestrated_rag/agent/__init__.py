"""Query orchestrator: routing, decomposition, retrieval and synthesis."""

from orchestrated_rag.agent.graph import QueryOrchestrator, QueryOutcome, build_graph, create_initial_state
from orchestrated_rag.agent.llm import Completion, CompletionProvider
from orchestrated_rag.agent.nodes import QueryNodes
from orchestrated_rag.agent.routing import route_query
from orchestrated_rag.agent.state import QueryRoute, QueryStep, ReasoningState, ResponseMode

__all__ = [
    "Completion",
    "CompletionProvider",
    "QueryNodes",
    "QueryOrchestrator",
    "QueryOutcome",
    "QueryRoute",
    "QueryStep",
    "ReasoningState",
    "ResponseMode",
    "build_graph",
    "create_initial_state",
    "route_query",
]
