"""Ingestion pipeline — keeps the vector store in sync with the document set.

Flow for :meth:`IngestionPipeline.load`::

    CHECKING ──► UP_TO_DATE ──────────────────────────► READY
        │
        └──────► REBUILDING ─► (≥1 document loaded) ──► READY
                            └► (none loaded) ─────────► FAILED

CHECKING fingerprints the declared document list and asks the store
whether its snapshot still matches.  REBUILDING clears the store and
processes every document concurrently (one task each); within a document,
chunks are embedded one at a time, in order, with a fixed pause between
calls.  A document that fails is logged, its partial chunks are removed
and the batch carries on.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Sequence
from uuid import uuid4

from orchestrated_rag.errors import ConfigurationError, IngestionError
from orchestrated_rag.ingestion.chunker import Chunker
from orchestrated_rag.ingestion.embedder import EmbeddingProvider
from orchestrated_rag.ingestion.extractors import EXTRACTOR_REGISTRY, TextExtractor, get_extractor
from orchestrated_rag.ingestion.models import DocumentMetadata, IngestionState
from orchestrated_rag.ingestion.source import DocumentSource
from orchestrated_rag.retrieval.base import VectorStoreBase
from orchestrated_rag.retrieval.models import Chunk

logger = logging.getLogger(__name__)


def compute_fingerprint(document_names: Sequence[str]) -> str:
    """Stable SHA-256 over the ordered document name list."""
    payload = json.dumps({"documents": list(document_names)}, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class IngestionPipeline:
    """Loads documents into a vector store, re-embedding only when needed.

    Parameters
    ----------
    store:
        Destination vector store.
    embedder:
        Provider used to embed every chunk.
    source:
        Where the manifest and document bytes come from.
    chunker:
        Chunking parameters (defaults to :class:`Chunker` defaults).
    extractors:
        Extension → extractor registry (defaults to
        :data:`~orchestrated_rag.ingestion.extractors.EXTRACTOR_REGISTRY`).
    embedding_delay:
        Seconds to wait between successive embedding calls of one document.
    fallback_documents:
        Names used when the source's manifest cannot be read.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: EmbeddingProvider,
        source: DocumentSource,
        *,
        chunker: Chunker | None = None,
        extractors: dict[str, TextExtractor] | None = None,
        embedding_delay: float = 0.1,
        fallback_documents: Sequence[str] = (),
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.source = source
        self.chunker = chunker or Chunker()
        self.extractors = extractors if extractors is not None else EXTRACTOR_REGISTRY
        self.embedding_delay = embedding_delay
        self.fallback_documents = list(fallback_documents)
        self.state = IngestionState.IDLE

    # -- public API -------------------------------------------------------------

    async def resolve_documents(self) -> list[str]:
        """Return the manifest's document list, or the fallback list."""
        try:
            return await self.source.list_documents()
        except Exception:
            logger.warning("Failed to load manifest, using fallback list", exc_info=True)
            return list(self.fallback_documents)

    async def load(self, document_names: Sequence[str] | None = None) -> list[DocumentMetadata]:
        """Bring the store up to date with *document_names* (or the manifest).

        Returns
        -------
        list[DocumentMetadata]
            One entry per successfully loaded document, in declared order.

        Raises
        ------
        IngestionError
            When no document could be loaded.
        ConfigurationError
            When the embedding credential is missing.
        """
        self.state = IngestionState.CHECKING
        names = list(document_names) if document_names is not None else await self.resolve_documents()
        # One task per source; chunk cleanup is keyed by name.
        names = list(dict.fromkeys(names))
        check = self.store.check_if_update_needed(compute_fingerprint(names))

        if not check.needs_update:
            self.state = IngestionState.UP_TO_DATE
            logger.info("Vector store is up to date, skipping reload")
            documents = self._cached_metadata(names)
            self.state = IngestionState.READY
            return documents

        self.state = IngestionState.REBUILDING
        logger.info("Vector store needs update, loading %d documents", len(names))
        self.store.clear()

        results = await asyncio.gather(
            *(self._load_document(name) for name in names),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, ConfigurationError):
                self.state = IngestionState.FAILED
                raise result
            if isinstance(result, BaseException):
                raise result

        documents = [doc for doc in results if isinstance(doc, DocumentMetadata)]
        if not documents:
            self.state = IngestionState.FAILED
            raise IngestionError(
                "No documents were loaded from the knowledge base",
                {"attempted": len(names)},
            )

        self.store.finalize_batch(check.fingerprint)
        self.state = IngestionState.READY
        logger.info(
            "Loaded %d/%d documents (%d chunks)",
            len(documents),
            len(names),
            self.store.chunk_count,
        )
        return documents

    def remove_document(self, name: str) -> int:
        """Drop every chunk of document *name* from the store."""
        return self.store.remove_chunks_by_source(name)

    # -- internals --------------------------------------------------------------

    def _cached_metadata(self, names: list[str]) -> list[DocumentMetadata]:
        return [
            DocumentMetadata(
                id=f"cached_{index}",
                name=name,
                chunk_count=self.store.count_by_source(name),
            )
            for index, name in enumerate(names)
        ]

    async def _load_document(self, name: str) -> DocumentMetadata | None:
        try:
            return await self._process_document(name)
        except ConfigurationError:
            self.store.remove_chunks_by_source(name)
            raise
        except Exception:
            logger.exception("Failed to load document %s", name)
            self.store.remove_chunks_by_source(name)
            return None

    async def _process_document(self, name: str) -> DocumentMetadata:
        extractor = get_extractor(name, self.extractors)
        data = await self.source.fetch(name)
        logger.info("Fetched %s (%d bytes)", name, len(data))

        text = await asyncio.to_thread(extractor.extract, data, name=name)
        if not text.strip():
            raise ValueError(f"Document {name} is empty or could not be read")

        pieces = self.chunker.chunk(text)
        logger.info("Created %d chunks for %s", len(pieces), name)

        doc_id = uuid4().hex[:12]
        for index, content in enumerate(pieces):
            embedding = await self.embedder.embed(content)
            self.store.add_chunk(
                Chunk(
                    id=f"{doc_id}_chunk_{index}",
                    content=content,
                    embedding=embedding,
                    source=name,
                    chunk_index=index,
                )
            )
            if index < len(pieces) - 1 and self.embedding_delay > 0:
                await asyncio.sleep(self.embedding_delay)

        return DocumentMetadata(id=doc_id, name=name, chunk_count=len(pieces), byte_size=len(data))
