"""FastAPI application exposing the assistant as a REST API."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from pydantic import BaseModel, Field

from orchestrated_rag.agent.state import ReasoningState, ResponseMode
from orchestrated_rag.assistant import MISSING_API_KEY_MESSAGE, ChatMessage, RAGAssistant
from orchestrated_rag.config import configure_logging
from orchestrated_rag.ingestion.models import DocumentMetadata


# ── Request / Response schemas ────────────────────────────────────────
class ChatRequest(BaseModel):
    """Incoming message from the user."""

    message: str = Field(min_length=1)
    response_mode: ResponseMode | None = None


class ChatResponse(BaseModel):
    """Assistant reply plus the final reasoning state."""

    reply: ChatMessage
    reasoning: ReasoningState | None = None


class StatusResponse(BaseModel):
    status: str
    chunk_count: int
    documents: list[DocumentMetadata] = []
    response_mode: ResponseMode
    is_loading: bool
    error: str | None = None
    reasoning: ReasoningState | None = None


class ConnectionResponse(BaseModel):
    connected: bool


def create_app(assistant: RAGAssistant | None = None) -> FastAPI:
    """Build the app around *assistant* (defaults to one built from settings)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        await app.state.assistant.initialize()
        yield

    app = FastAPI(
        title="Orchestrated RAG API",
        version="0.1.0",
        description="REST interface to the retrieval-augmented assistant.",
        lifespan=lifespan,
    )
    app.state.assistant = assistant or RAGAssistant.from_settings()

    def get_assistant(request: Request) -> RAGAssistant:
        return request.app.state.assistant

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok"}

    @app.get("/status", response_model=StatusResponse)
    async def get_status(request: Request) -> StatusResponse:
        """Knowledge-base and conversation state."""
        rag = get_assistant(request)
        return StatusResponse(
            status=rag.status.value,
            chunk_count=rag.store.chunk_count,
            documents=rag.documents,
            response_mode=rag.response_mode,
            is_loading=rag.is_loading,
            error=rag.error,
            reasoning=rag.reasoning,
        )

    @app.post("/chat", response_model=ChatResponse)
    async def chat(request: Request, body: ChatRequest) -> ChatResponse:
        """Answer one message in the ongoing conversation."""
        rag = get_assistant(request)
        if body.response_mode is not None:
            rag.set_response_mode(body.response_mode)

        reply = await rag.send_message(body.message)
        if reply is None:
            if rag.error == MISSING_API_KEY_MESSAGE:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=rag.error)
            if rag.error:
                raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=rag.error)
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Message was superseded or empty")
        return ChatResponse(reply=reply, reasoning=rag.reasoning)

    @app.delete("/conversation", status_code=status.HTTP_204_NO_CONTENT)
    async def clear_conversation(request: Request) -> None:
        get_assistant(request).clear_conversation()

    @app.get("/connection", response_model=ConnectionResponse)
    async def connection(request: Request) -> ConnectionResponse:
        """Check that the provider accepts the configured credential."""
        return ConnectionResponse(connected=await get_assistant(request).test_connection())

    return app
