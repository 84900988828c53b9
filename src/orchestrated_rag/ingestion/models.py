"""Models produced by the ingestion pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class IngestionState(str, Enum):
    """Pipeline progress: CHECKING → (UP_TO_DATE | REBUILDING) → READY | FAILED."""

    IDLE = "idle"
    CHECKING = "checking"
    UP_TO_DATE = "up_to_date"
    REBUILDING = "rebuilding"
    READY = "ready"
    FAILED = "failed"


class DocumentMetadata(BaseModel):
    """Summary of one loaded document.

    Derived data only; the chunks in the vector store are authoritative.
    """

    id: str
    name: str
    chunk_count: int = 0
    byte_size: int = 0
    loaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
