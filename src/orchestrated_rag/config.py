"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

import logging

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM / embeddings
    openai_api_key: str = Field(default="", description="Bearer credential for the OpenAI-compatible API")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible API (embeddings, chat, model listing)",
    )
    llm_model_name: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-ada-002"
    temperature: float = 0.7
    max_tokens: int = 2000
    request_timeout: float = 30.0

    # Conversation
    conversation_turns: int = Field(default=5, description="Turns of history sent with each completion")
    retrieval_count: int = Field(default=5, description="Total chunks retrieved per query")
    response_mode: str = Field(default="quick", description="'quick' or 'detailed'")

    # Chunking
    chunk_size: int = 2000
    min_chunk_length: int = 50

    # Vector store
    similarity_threshold: float = 0.7
    noise_floor: float = 0.1
    snapshot_max_age_days: float = 7.0
    snapshot_refresh_window_seconds: float = 3600.0
    storage_dir: str = ".rag_storage"
    storage_key: str = "vectordb_data"

    # Documents
    documents_base_url: str = Field(
        default="",
        description="HTTP base path serving manifest.json and the documents. Takes precedence over documents_dir.",
    )
    documents_dir: str = "documents"
    fallback_documents: list[str] = Field(
        default_factory=list,
        description="Document names used when the manifest cannot be read",
    )
    embedding_delay_seconds: float = 0.1

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def configure_logging(level: str | None = None) -> None:
    """Install a root handler at *level* (defaults to ``settings.log_level``)."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Default values for the application root; components receive their
# configuration explicitly.
settings = Settings()
