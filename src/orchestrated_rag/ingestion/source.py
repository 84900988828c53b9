"""Document sources — where the manifest and the raw document bytes come from.

Two implementations:

* :class:`HttpDocumentSource` — ``<base_url>/manifest.json`` plus one
  ``GET <base_url>/<name>`` per document.
* :class:`DirectoryDocumentSource` — a local folder, with an optional
  ``manifest.json`` in it.

The manifest format is ``{"documents": ["a.pdf", "b.docx", ...]}``; its
order is the declared document order.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote

import requests

from orchestrated_rag.ingestion.extractors import SUPPORTED_EXTENSIONS

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


def _parse_manifest(payload: object) -> list[str]:
    if not isinstance(payload, dict) or not isinstance(payload.get("documents", []), list):
        raise ValueError("Manifest must be an object with a 'documents' list")
    return [str(name) for name in payload.get("documents", [])]


class DocumentSource(ABC):
    """Provides the ordered document list and each document's bytes."""

    @abstractmethod
    async def list_documents(self) -> list[str]:
        """Return the declared document names in manifest order."""
        ...

    @abstractmethod
    async def fetch(self, name: str) -> bytes:
        """Return the raw bytes of document *name*."""
        ...


class HttpDocumentSource(DocumentSource):
    """Documents served over HTTP from a static base path.

    Parameters
    ----------
    base_url:
        URL prefix, e.g. ``"https://example.org/documents"``.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(self, base_url: str, *, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _get(self, url: str) -> requests.Response:
        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response

    async def list_documents(self) -> list[str]:
        url = f"{self.base_url}/{MANIFEST_NAME}"
        response = await asyncio.to_thread(self._get, url)
        documents = _parse_manifest(response.json())
        logger.info("Loaded manifest with %d documents", len(documents))
        return documents

    async def fetch(self, name: str) -> bytes:
        url = f"{self.base_url}/{quote(name)}"
        logger.info("Fetching document: %s", url)
        response = await asyncio.to_thread(self._get, url)
        return response.content


class DirectoryDocumentSource(DocumentSource):
    """Documents read from a local directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    async def list_documents(self) -> list[str]:
        manifest = self.directory / MANIFEST_NAME
        if manifest.is_file():
            documents = _parse_manifest(json.loads(manifest.read_text(encoding="utf-8")))
        else:
            documents = sorted(
                p.name
                for p in self.directory.iterdir()
                if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
            )
        logger.info("Found %d documents in %s", len(documents), self.directory)
        return documents

    async def fetch(self, name: str) -> bytes:
        path = (self.directory / name).resolve()
        if self.directory.resolve() not in path.parents:
            raise FileNotFoundError(f"{name!r} is outside {self.directory}")
        return await asyncio.to_thread(path.read_bytes)
