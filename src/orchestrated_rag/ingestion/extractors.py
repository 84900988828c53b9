"""Format-specific text extraction.

Each supported extension maps to one :class:`TextExtractor` in
:data:`EXTRACTOR_REGISTRY`, so the ingestion pipeline never branches on
file types itself.  Register a new format by adding an instance to the
registry.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from pathlib import PurePosixPath

from pypdf import PdfReader

from orchestrated_rag.errors import UnsupportedDocumentError

logger = logging.getLogger(__name__)


class TextExtractor(ABC):
    """Turns the raw bytes of one document format into plain text."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def extract(self, data: bytes, *, name: str = "") -> str:
        """Return the text content of *data*.

        *name* is only used in log and error messages.
        """
        ...


class PlainTextExtractor(TextExtractor):
    """``.txt`` and ``.md`` files, decoded as UTF-8."""

    extensions = (".txt", ".md")

    def extract(self, data: bytes, *, name: str = "") -> str:
        return data.decode("utf-8", errors="replace")


class PdfExtractor(TextExtractor):
    """PDF text layer, one line per page."""

    extensions = (".pdf",)

    def extract(self, data: bytes, *, name: str = "") -> str:
        reader = PdfReader(io.BytesIO(data))
        pages: list[str] = []
        for page in reader.pages:
            page_text = page.extract_text() or ""
            if page_text.strip():
                pages.append(page_text)
        text = "\n".join(pages)
        logger.info("Extracted %d characters from PDF %s (%d pages)", len(text), name, len(reader.pages))
        return text


class DocxExtractor(TextExtractor):
    """Word documents: paragraphs first, then table rows."""

    extensions = (".docx",)

    def extract(self, data: bytes, *, name: str = "") -> str:
        from docx import Document

        doc = Document(io.BytesIO(data))
        parts = [p.text.strip() for p in doc.paragraphs if p.text.strip()]
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        # Blank lines keep paragraphs as separate sections for the chunker.
        text = "\n\n".join(parts)
        logger.info("Extracted %d characters from %s", len(text), name)
        return text


def _build_registry(*extractors: TextExtractor) -> dict[str, TextExtractor]:
    registry: dict[str, TextExtractor] = {}
    for extractor in extractors:
        for ext in extractor.extensions:
            registry[ext] = extractor
    return registry


EXTRACTOR_REGISTRY: dict[str, TextExtractor] = _build_registry(
    PlainTextExtractor(),
    PdfExtractor(),
    DocxExtractor(),
)
"""Mapping of lower-case file extension → extractor."""

SUPPORTED_EXTENSIONS: tuple[str, ...] = tuple(EXTRACTOR_REGISTRY)


def extension_of(name: str) -> str:
    return PurePosixPath(name).suffix.lower()


def get_extractor(name: str, registry: dict[str, TextExtractor] | None = None) -> TextExtractor:
    """Return the extractor registered for *name*'s extension."""
    registry = EXTRACTOR_REGISTRY if registry is None else registry
    ext = extension_of(name)
    try:
        return registry[ext]
    except KeyError:
        raise UnsupportedDocumentError(
            f"Unsupported file type: {ext or '(none)'}",
            {"document": name, "supported": sorted(registry)},
        ) from None
