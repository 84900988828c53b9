"""Text chunking strategy.

Documents are split on blank lines into sections.  A section that fits the
target size becomes one chunk verbatim; larger sections are packed greedily
sentence by sentence.  Fragments below a minimum length are dropped as
noise.

Adjacent chunks never overlap.  A single sentence longer than the target
size is emitted whole rather than cut mid-sentence, so such a chunk can
exceed ``chunk_size``.
"""

from __future__ import annotations

import re

DEFAULT_CHUNK_SIZE = 2000
DEFAULT_MIN_CHUNK_LENGTH = 50

_SECTION_BREAK = re.compile(r"\n\s*\n")
# A run of non-terminators followed by its terminators (or end of text).
_SENTENCE = re.compile(r"[^.!?]+(?:[.!?]+|$)")


def split_sentences(text: str) -> list[str]:
    """Split *text* into stripped sentences, keeping their terminators."""
    return [s.strip() for s in _SENTENCE.findall(text) if s.strip()]


def chunk_text(
    text: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    min_chunk_length: int = DEFAULT_MIN_CHUNK_LENGTH,
) -> list[str]:
    """Split *text* into retrieval-sized chunks.

    Parameters
    ----------
    text:
        Raw document text.
    chunk_size:
        Target maximum number of characters per chunk.
    min_chunk_length:
        Chunks shorter than this are discarded.

    Returns
    -------
    list[str]
        Chunks in document order.  Identical input gives identical output.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    chunks: list[str] = []

    for section in _SECTION_BREAK.split(normalized):
        section = section.strip()
        if len(section) < min_chunk_length:
            continue
        if len(section) <= chunk_size:
            chunks.append(section)
            continue
        chunks.extend(_pack_sentences(split_sentences(section), chunk_size))

    return [c for c in chunks if len(c) >= min_chunk_length]


def _pack_sentences(sentences: list[str], chunk_size: int) -> list[str]:
    packed: list[str] = []
    buffer = ""
    for sentence in sentences:
        candidate = f"{buffer} {sentence}" if buffer else sentence
        if len(candidate) <= chunk_size:
            buffer = candidate
            continue
        if buffer:
            packed.append(buffer)
        buffer = sentence
    if buffer:
        packed.append(buffer)
    return packed


class Chunker:
    """Holds chunking parameters for the ingestion pipeline."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        min_chunk_length: int = DEFAULT_MIN_CHUNK_LENGTH,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.min_chunk_length = min_chunk_length

    def chunk(self, text: str) -> list[str]:
        return chunk_text(text, chunk_size=self.chunk_size, min_chunk_length=self.min_chunk_length)
