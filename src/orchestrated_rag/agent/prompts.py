"""Prompt templates for the query orchestrator.

Every LLM call made by the graph gets its messages from this module.
Answer prompts come in two flavours, one per :class:`ResponseMode`; both
share the same context assembly so the retrieved evidence is presented
identically whatever the answer style.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

from orchestrated_rag.agent.state import ResponseMode, SubtopicResult

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

    from orchestrated_rag.retrieval.models import RetrievalResult

NO_CONTEXT = (
    "No specific context available from knowledge base. "
    "Please provide a general response based on your own knowledge."
)

MAX_SUBTOPICS = 7
DECOMPOSITION_TEMPERATURE = 0.3
DECOMPOSITION_MAX_TOKENS = 500

# ── 1. Query decomposition ────────────────────────────────────────────

DECOMPOSITION_SYSTEM = """\
You are a query orchestrator that breaks down complex questions into
focused subtopics for parallel research.

Decompose the user's question into 3-7 specific subtopics that can be
researched independently. Each subtopic should:
- Be specific enough for information retrieval
- Cover a distinct aspect of the original question
- Together with the others, fully address the original question

Respond with **only** a JSON array of strings. No commentary.

Example:
["Performance metrics of model A", "Performance metrics of model B", "Cost differences between A and B"]
"""


def build_decomposition_prompt(query: str) -> list[BaseMessage]:
    """Build the prompt for the ``plan`` node."""
    return [
        SystemMessage(content=DECOMPOSITION_SYSTEM),
        HumanMessage(content=query),
    ]


# ── 2. Context assembly (shared by every answer prompt) ───────────────


def format_passages(passages: Sequence[tuple[str, str]], *, inline: bool = False) -> str:
    """Render ``(source, content)`` pairs as ``[Source: name]`` blocks."""
    separator = " " if inline else "\n"
    return "\n\n".join(f"[Source: {source}]{separator}{content}" for source, content in passages)


def build_context(results: Sequence[RetrievalResult]) -> str:
    """Context block for a single search, or :data:`NO_CONTEXT` when empty."""
    if not results:
        return NO_CONTEXT
    return format_passages([(r.citation.source, r.content) for r in results])


def build_subtopic_context(subtopic_results: Sequence[SubtopicResult]) -> str:
    """Context block grouped under one ``## subtopic`` heading per subtopic."""
    sections = []
    for result in subtopic_results:
        if result.chunks:
            body = format_passages([(c.source, c.content) for c in result.chunks], inline=True)
        else:
            body = "(no relevant passages found)"
        sections.append(f"## {result.subtopic}\n{body}")
    return "\n\n---\n\n".join(sections)


# ── 3. Answer strategies ──────────────────────────────────────────────

_CONTEXT_PREAMBLE = "Use the following context from the knowledge base to answer.\n\nContext from knowledge base:\n"
_NO_CONTEXT_PREAMBLE = (
    "No knowledge base context is available, so answer from general knowledge "
    "and say that the knowledge base did not cover the question."
)


def _context_section(context: str) -> str:
    if context == NO_CONTEXT:
        return _NO_CONTEXT_PREAMBLE
    return _CONTEXT_PREAMBLE + context


class PromptStrategy(ABC):
    """Builds answer prompts for one :class:`ResponseMode`."""

    mode: ResponseMode

    @abstractmethod
    def system_prompt(self, context: str) -> str:
        """System prompt for a single-search answer."""

    @abstractmethod
    def synthesis_system_prompt(self, query: str, context: str) -> str:
        """System prompt for an answer synthesized from subtopic research."""

    @abstractmethod
    def token_budget(self, max_tokens: int) -> int:
        """Completion token limit derived from the configured maximum."""

    def build_answer_prompt(
        self,
        query: str,
        context: str,
        history: Sequence[BaseMessage] = (),
    ) -> list[BaseMessage]:
        return [
            SystemMessage(content=self.system_prompt(context)),
            *history,
            HumanMessage(content=query),
        ]

    def build_synthesis_prompt(
        self,
        query: str,
        context: str,
        history: Sequence[BaseMessage] = (),
    ) -> list[BaseMessage]:
        # Only the tail of the conversation is relevant once research is done.
        return [
            SystemMessage(content=self.synthesis_system_prompt(query, context)),
            *list(history)[-3:],
            HumanMessage(content=query),
        ]


class QuickPromptStrategy(PromptStrategy):
    """Step-by-step guide, moderate length."""

    mode = ResponseMode.QUICK

    def system_prompt(self, context: str) -> str:
        return f"""\
You are an expert knowledge tutor helping junior staff. Give clear,
step-by-step guidance a newcomer can follow.

{_context_section(context)}

Structure your answer as:
1. **Summary** - one or two sentences on what the answer covers.
2. **Steps** - numbered steps, each saying what to do and why.
3. **Verification checklist** - markdown checkboxes (- [ ]).

Cite sources by name when you rely on the context.
"""

    def synthesis_system_prompt(self, query: str, context: str) -> str:
        return f"""\
You are an expert knowledge tutor creating a step-by-step guide from
several pieces of research on the question: {query}

Research findings, grouped by subtopic:
{context}

Structure your answer as a summary, numbered steps and a verification
checklist. Combine the findings; do not answer each subtopic separately.
Cite sources by name.
"""

    def token_budget(self, max_tokens: int) -> int:
        return max(max_tokens, 2000)


class DetailedPromptStrategy(PromptStrategy):
    """Training-manual style answer with examples and pitfalls."""

    mode = ResponseMode.DETAILED

    def system_prompt(self, context: str) -> str:
        return f"""\
You are an expert knowledge tutor writing a comprehensive training manual
for junior staff.

{_context_section(context)}

Structure your answer with these sections:
## Overview
## Prerequisites
## Detailed Procedure (numbered steps with rationale and expected result)
## Common Pitfalls
## Verification Checklist (markdown checkboxes)
## Worked Example
## Further Reading

Be thorough; verbosity is preferred over brevity. Cite sources by name.
"""

    def synthesis_system_prompt(self, query: str, context: str) -> str:
        return f"""\
You are an expert knowledge tutor writing a comprehensive training manual
from several pieces of research on the question: {query}

Research findings, grouped by subtopic:
{context}

Use the sections Overview, Prerequisites, Detailed Procedure, Common
Pitfalls, Verification Checklist, Worked Example and Further Reading.
Integrate the findings into one coherent manual and cite sources by name.
"""

    def token_budget(self, max_tokens: int) -> int:
        return max(max_tokens * 2, 4000)


PROMPT_STRATEGIES: dict[ResponseMode, PromptStrategy] = {
    ResponseMode.QUICK: QuickPromptStrategy(),
    ResponseMode.DETAILED: DetailedPromptStrategy(),
}


def get_prompt_strategy(mode: ResponseMode | str) -> PromptStrategy:
    """Return the strategy for *mode* (accepts the enum or its value)."""
    return PROMPT_STRATEGIES[ResponseMode(mode)]
