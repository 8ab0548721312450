"""Service layer composing ingestion, retrieval and chat."""

from .rag import (
    APOLOGY_MESSAGE,
    ChatTurn,
    IngestResult,
    QueryState,
    RagOrchestrator,
    SearchHit,
    get_rag_service,
    reset_rag_service_cache,
)

__all__ = [
    "APOLOGY_MESSAGE",
    "ChatTurn",
    "IngestResult",
    "QueryState",
    "RagOrchestrator",
    "SearchHit",
    "get_rag_service",
    "reset_rag_service_cache",
]
