"""Embedding provider — text in, fixed-length vector out.

Wraps ``langchain_openai.OpenAIEmbeddings`` so that the rest of the code
only sees ``await provider.embed(text)``.  The API key is read at the time
of each call, which makes :meth:`EmbeddingProvider.update_api_key` safe
between requests.
"""

from __future__ import annotations

import logging

import openai
from langchain_openai import OpenAIEmbeddings

from orchestrated_rag.errors import ConfigurationError, TransientProviderError

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """OpenAI-compatible embedding client.

    Parameters
    ----------
    api_key:
        Bearer credential.  May be empty at construction time and supplied
        later through :meth:`update_api_key`.
    model:
        Embedding model identifier.
    base_url:
        Base URL of the OpenAI-compatible API.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        *,
        api_key: str = "",
        model: str = "text-embedding-ada-002",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout

    def update_api_key(self, api_key: str) -> None:
        self._api_key = api_key

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key)

    def get_embeddings(self) -> OpenAIEmbeddings:
        """Return a client bound to the current credential."""
        if not self._api_key:
            raise ConfigurationError("OpenAI API key is required")
        return OpenAIEmbeddings(
            model=self.model,
            api_key=self._api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
            # Send raw text; the API enforces its own context length.
            check_embedding_ctx_length=False,
        )

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for *text*."""
        client = self.get_embeddings()
        try:
            return await client.aembed_query(text)
        except openai.OpenAIError as exc:
            logger.error("Error generating embedding: %s", exc)
            raise TransientProviderError("Failed to generate embedding", {"error": str(exc)}) from exc
