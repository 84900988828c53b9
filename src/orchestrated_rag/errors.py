"""Exception hierarchy shared by ingestion, retrieval and orchestration.

Errors that only affect one unit of work (a document, a chunk, a subtopic)
are caught and logged where they happen.  Errors that make the whole
operation meaningless propagate to the caller.
"""

from __future__ import annotations

from typing import Any


class RAGError(Exception):
    """Base class for all application errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(RAGError):
    """A required setting (usually the API credential) is missing."""


class DimensionMismatch(RAGError, ValueError):
    """Two vectors that must share a dimensionality do not."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class TransientProviderError(RAGError):
    """The embedding or completion service returned an error."""


class PersistenceError(RAGError):
    """The snapshot could not be read from or written to storage."""


class DecompositionParseError(RAGError):
    """The completion service returned a malformed subtopic list."""


class UnsupportedDocumentError(RAGError):
    """No text extractor is registered for a document's extension."""


class IngestionError(RAGError):
    """Ingestion finished without loading a single document."""
