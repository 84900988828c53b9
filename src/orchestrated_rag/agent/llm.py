"""Completion provider — single place to swap chat-model backends.

``ChatOpenAI`` talks to any OpenAI-compatible ``/chat/completions``
endpoint, so pointing ``base_url`` at a self-hosted server works unchanged.
The API key is read at the time of each call.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import openai
import requests
from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI

from orchestrated_rag.errors import ConfigurationError, TransientProviderError

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """Text returned by the chat model plus the tokens it consumed."""

    text: str
    tokens_used: int = 0


class CompletionProvider:
    """OpenAI-compatible chat-completion client.

    Parameters
    ----------
    api_key:
        Bearer credential; may be supplied later via :meth:`update_api_key`.
    model:
        Chat model identifier.
    base_url:
        Base URL of the OpenAI-compatible API.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        *,
        api_key: str = "",
        model: str = "gpt-4o-mini",
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

    def get_llm(self, temperature: float = 0.0, max_tokens: int | None = None) -> ChatOpenAI:
        """Return the configured chat model bound to the current credential."""
        if not self._api_key:
            raise ConfigurationError("OpenAI API key is required")
        kwargs: dict = {
            "model": self.model,
            "temperature": temperature,
            "api_key": self._api_key,
            "base_url": self.base_url,
            "timeout": self.timeout,
            "max_retries": 0,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        return ChatOpenAI(**kwargs)

    async def complete(
        self,
        messages: list[BaseMessage],
        *,
        temperature: float = 0.0,
        max_tokens: int | None = None,
    ) -> Completion:
        """Run one chat completion over *messages*."""
        llm = self.get_llm(temperature=temperature, max_tokens=max_tokens)
        try:
            response = await llm.ainvoke(messages)
        except openai.OpenAIError as exc:
            logger.error("Error generating completion: %s", exc)
            raise TransientProviderError("Failed to generate completion", {"error": str(exc)}) from exc

        usage = getattr(response, "usage_metadata", None) or {}
        return Completion(text=str(response.content), tokens_used=usage.get("total_tokens", 0))

    async def test_connection(self) -> bool:
        """Return ``True`` when the API accepts the current credential."""
        if not self._api_key:
            return False
        url = f"{self.base_url.rstrip('/')}/models"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            response = await asyncio.to_thread(requests.get, url, headers=headers, timeout=self.timeout)
        except requests.RequestException:
            logger.warning("Connection test failed", exc_info=True)
            return False
        return response.ok
