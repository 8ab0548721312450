from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from ragchat.config import RagConfig, get_config
from ragchat.conversation import (
    SYSTEM_ROLE,
    USER_ROLE,
    ConversationContext,
    ConversationManager,
    ConversationMessage,
    SessionRegistry,
)
from ragchat.embeddings import (
    Embedder,
    EmbeddingModel,
    build_embedding_model,
    get_embedding_model,
)
from ragchat.errors import InvalidQueryParameters, RagError
from ragchat.ingest import (
    DocumentChunk,
    DocumentMetadata,
    IngestPipeline,
    IngestPipelineConfig,
    chunk_id_for,
    document_id_for,
)
from ragchat.llm import ChatModel, build_chat_model, get_chat_model
from ragchat.logging_config import AUDIT_LOGGER_NAME
from ragchat.prompt_builder import ContextAssembler
from ragchat.telemetry import (
    emit_exception,
    emit_inference_request,
    emit_inference_result,
    emit_ingest_event,
    emit_prompt_event,
    emit_retriever_event,
    emit_state_transition,
    emit_vectorstore_event,
)
from ragchat.vectorstore import (
    RetryingVectorIndex,
    SearchResult,
    VectorIndex,
    build_vector_index,
    get_vector_index,
)

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

APOLOGY_MESSAGE = "Sorry, I could not generate an answer right now. Please try again in a moment."
CONTENT_PREVIEW_CHARS = 200
_CHUNK_ID_RE = re.compile(r"^(?P<document>.+)_\d+$")


class QueryState(str, Enum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    ASSEMBLING = "assembling"
    GENERATING = "generating"
    FAILED = "failed"


class _QueryCancelled(Exception):
    """Internal signal raised when the caller cancels an in-flight query."""


@dataclass(slots=True)
class IngestResult:
    """Structured result returned from :meth:`RagOrchestrator.ingest`."""

    document_id: str
    file_name: str
    chunk_count: int
    stale_removed: int
    duration_seconds: float


@dataclass(slots=True)
class ChatTurn:
    """Outcome of one conversational turn."""

    response: str
    model: str
    failed: bool = False
    cancelled: bool = False
    sources: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SearchHit:
    """A search result trimmed for display."""

    id: str
    title: str
    content_preview: str
    department: str
    score: float


def _normalize_tags(tags: Iterable[str]) -> tuple[str, ...]:
    cleaned = (tag.strip() for tag in tags)
    return tuple(dict.fromkeys(tag for tag in cleaned if tag))


class RagOrchestrator:
    """Compose ingestion and grounded question answering over one vector index."""

    def __init__(
        self,
        config: RagConfig | None = None,
        *,
        embedder: Embedder | None = None,
        vector_index: VectorIndex | None = None,
        chat_model: ChatModel | None = None,
        pipeline: IngestPipeline | None = None,
        assembler: ContextAssembler | None = None,
        conversations: ConversationManager | None = None,
        sessions: SessionRegistry | None = None,
    ) -> None:
        self.config = config or RagConfig()
        if embedder is None:
            embedder = build_embedding_model(self.config)
        elif not isinstance(embedder, EmbeddingModel):
            embedder = EmbeddingModel(
                embedder,  # type: ignore[arg-type]
                attempts=self.config.embedding_retries,
                backoff_seconds=self.config.retry_backoff_seconds,
            )
        self.embedder: EmbeddingModel = embedder
        if vector_index is None:
            vector_index = build_vector_index(self.config)
        elif not isinstance(vector_index, RetryingVectorIndex):
            vector_index = RetryingVectorIndex(
                vector_index,
                attempts=self.config.store_retries,
                backoff_seconds=self.config.retry_backoff_seconds,
            )
        self.vector_index: RetryingVectorIndex = vector_index
        self.chat_model = chat_model or build_chat_model(self.config)
        self.pipeline = pipeline or IngestPipeline(
            IngestPipelineConfig(chunk_chars=self.config.chunk_size, overlap_chars=self.config.chunk_overlap)
        )
        self.assembler = assembler or ContextAssembler()
        self.conversations = conversations or ConversationManager()
        self.sessions = sessions or SessionRegistry()
        self._states: Dict[str, QueryState] = {}
        self._states_lock = threading.Lock()
        self._document_locks: Dict[str, threading.Lock] = {}
        self._document_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def ingest(
        self,
        file_bytes: bytes,
        file_name: str,
        *,
        department: str = "",
        tags: Iterable[str] = (),
    ) -> IngestResult:
        """Index one file; either every chunk of it is stored or none is."""

        started = time.perf_counter()
        display_name = Path(file_name or "").name or "upload"
        document_id = document_id_for(display_name)
        emit_ingest_event(
            "ingest.file.start",
            file_name=display_name,
            document_id=document_id,
            size_bytes=len(file_bytes),
        )

        try:
            prepared = self.pipeline.prepare(file_bytes, display_name)
            metadata = DocumentMetadata(
                file_name=display_name,
                file_type=prepared.document_format.value,
                department=department.strip(),
                tags=_normalize_tags(tags),
            )
            embeddings = self.embedder.embed_texts(prepared.chunks)
            chunks = [
                DocumentChunk(
                    id=chunk_id_for(document_id, index),
                    content=text,
                    title=f"{display_name} - Chunk {index + 1}",
                    embedding=tuple(vector),
                    metadata=metadata,
                )
                for index, (text, vector) in enumerate(zip(prepared.chunks, embeddings))
            ]
            with self._document_lock(document_id):
                self._persist_chunks(chunks)
                stale_removed = self._remove_stale_chunks(document_id, {chunk.id for chunk in chunks})
        except Exception as error:
            emit_ingest_event(
                "ingest.file.error",
                file_name=display_name,
                document_id=document_id,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            emit_exception(module=f"{__name__}.ingest", error=error)
            raise

        stats = self.pipeline.last_statistics
        duration = time.perf_counter() - started
        emit_ingest_event(
            "ingest.file.complete",
            file_name=display_name,
            document_id=document_id,
            size_bytes=len(file_bytes),
            duration_ms=duration * 1000.0,
            blocks=stats.block_count if stats else None,
            chunks=len(chunks),
        )
        AUDIT_LOGGER.info(
            {
                "event": "ingest",
                "document_id": document_id,
                "file_name": display_name,
                "department": metadata.department,
                "chunk_count": len(chunks),
            }
        )
        return IngestResult(
            document_id=document_id,
            file_name=display_name,
            chunk_count=len(chunks),
            stale_removed=stale_removed,
            duration_seconds=duration,
        )

    def delete_document(self, identifier: str) -> int:
        """Remove a whole document or a single chunk; returns the number removed."""

        identifier = identifier.strip()
        if not identifier:
            return 0
        with self._document_lock(self._lock_key(identifier)):
            started = time.perf_counter()
            removed = self.vector_index.delete(identifier)
        emit_vectorstore_event(
            "vectorstore.delete",
            backend=self.vector_index.backend_name,
            count=removed,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        AUDIT_LOGGER.info({"event": "delete", "identifier": identifier, "removed": removed})
        return removed

    def _persist_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return
        started = time.perf_counter()
        try:
            self.vector_index.store(chunks)
        except RagError as error:
            emit_vectorstore_event(
                "vectorstore.store",
                backend=self.vector_index.backend_name,
                count=len(chunks),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            raise
        emit_vectorstore_event(
            "vectorstore.store",
            backend=self.vector_index.backend_name,
            count=len(chunks),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _remove_stale_chunks(self, document_id: str, current_ids: set[str]) -> int:
        removed = 0
        for chunk_id in self.vector_index.list_ids(document_id):
            if chunk_id in current_ids or self._lock_key(chunk_id) != document_id:
                continue
            removed += self.vector_index.delete(chunk_id)
        if removed:
            LOGGER.info("Removed %s stale chunks of %s", removed, document_id)
        return removed

    @staticmethod
    def _lock_key(identifier: str) -> str:
        match = _CHUNK_ID_RE.match(identifier)
        return match.group("document") if match else identifier

    @contextmanager
    def _document_lock(self, document_id: str) -> Iterator[None]:
        with self._document_locks_guard:
            lock = self._document_locks.setdefault(document_id, threading.Lock())
        with lock:
            yield

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------
    def search(
        self,
        query: str,
        *,
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> List[SearchHit]:
        """Return the chunks most similar to *query* trimmed for display."""

        if not query or not query.strip():
            raise InvalidQueryParameters("Search query must not be empty")
        top_k = self.config.search_top_k if top_k is None else top_k
        threshold = self.config.similarity_threshold if threshold is None else threshold
        results = self._retrieve(query, top_k=top_k, min_score=threshold)
        return [
            SearchHit(
                id=result.chunk.id,
                title=result.chunk.title,
                content_preview=result.chunk.content[:CONTENT_PREVIEW_CHARS],
                department=result.chunk.metadata.department,
                score=result.score,
            )
            for result in results
        ]

    def embed(self, text: str) -> List[float]:
        return self.embedder.embed_text(text)

    def _retrieve(
        self,
        query: str,
        *,
        top_k: int,
        min_score: float,
        session_id: str | None = None,
    ) -> List[SearchResult]:
        if top_k <= 0:
            raise InvalidQueryParameters(f"top_k must be a positive integer (got {top_k})")
        started = time.perf_counter()
        query_vector = self.embedder.embed_text(query)
        results = self.vector_index.search(query_vector, top_k=top_k, min_score=min_score)
        emit_retriever_event(
            query=query,
            top_k=top_k,
            min_score=min_score,
            results=[{"id": result.chunk.id, "score": round(result.score, 4)} for result in results],
            duration_ms=(time.perf_counter() - started) * 1000.0,
            session_id=session_id,
        )
        return results

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------
    def query(
        self,
        user_message: str,
        context: ConversationContext,
        *,
        model: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ChatTurn:
        """Answer *user_message* grounded in retrieved chunks and record the turn.

        Failures never propagate: the user message is recorded once, followed
        by a single apology. A cancelled turn leaves the history untouched.
        """

        session_id = context.session_id
        req_id = uuid.uuid4().hex
        model_id = model or self.chat_model.model_name
        sources: List[str] = []
        started = time.perf_counter()

        try:
            self._set_state(session_id, QueryState.RETRIEVING)
            results = self._retrieve(
                user_message,
                top_k=self.config.chat_top_k,
                min_score=self.config.similarity_threshold,
                session_id=session_id,
            )
            sources = [result.chunk.id for result in results]
            self._raise_if_cancelled(cancel_event)

            self._set_state(session_id, QueryState.ASSEMBLING)
            system_prompt = self.assembler.assemble(user_message, results)
            history = self.conversations.windowed(context, self.config.history_window)
            messages = [{"role": SYSTEM_ROLE, "content": system_prompt}]
            messages.extend(self.conversations.to_model_messages(history))
            messages.append({"role": USER_ROLE, "content": user_message})
            emit_prompt_event(
                system_prompt=system_prompt,
                sources=sources,
                history_messages=len(history),
                session_id=session_id,
            )
            self._raise_if_cancelled(cancel_event)

            self._set_state(session_id, QueryState.GENERATING)
            emit_inference_request(
                req_id=req_id,
                session_id=session_id,
                model=model_id,
                message_count=len(messages),
                prompt_len=sum(len(message["content"]) for message in messages),
            )
            completion = self.chat_model.complete(messages, model=model)
            self._raise_if_cancelled(cancel_event)
        except _QueryCancelled:
            LOGGER.info("Query %s for session %s was cancelled", req_id, session_id)
            self._set_state(session_id, QueryState.IDLE)
            return ChatTurn(response="", model=model_id, cancelled=True, sources=sources)
        except Exception as error:
            self._set_state(session_id, QueryState.FAILED)
            LOGGER.exception("Query %s failed for session %s", req_id, session_id)
            emit_exception(module=f"{__name__}.query", error=error, req_id=req_id, session_id=session_id)
            self.conversations.append(context, ConversationMessage.user(user_message))
            self.conversations.append(context, ConversationMessage.assistant(APOLOGY_MESSAGE))
            emit_inference_result(
                req_id=req_id,
                session_id=session_id,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                model_used=model_id,
                answer_preview=APOLOGY_MESSAGE,
                fallback=True,
            )
            self._set_state(session_id, QueryState.IDLE)
            return ChatTurn(response=APOLOGY_MESSAGE, model=model_id, failed=True, sources=[])

        self.conversations.append(context, ConversationMessage.user(user_message))
        self.conversations.append(context, ConversationMessage.assistant(completion.text))
        emit_inference_result(
            req_id=req_id,
            session_id=session_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            model_used=completion.model,
            answer_preview=completion.text,
            fallback=False,
        )
        AUDIT_LOGGER.info(
            {
                "event": "query",
                "session_id": session_id,
                "user_id": context.user_id,
                "question": user_message,
                "sources": sources,
            }
        )
        self._set_state(session_id, QueryState.IDLE)
        return ChatTurn(response=completion.text, model=completion.model, sources=sources)

    def chat(
        self,
        session_id: str,
        message: str,
        *,
        user_id: str = "anonymous",
        model: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ChatTurn:
        """Run one turn for a registered session; a concurrent turn raises ``SessionBusy``."""

        self.sessions.open(session_id, user_id)
        with self.sessions.turn(session_id) as context:
            return self.query(message, context, model=model, cancel_event=cancel_event)

    def reply(self, messages: Sequence[ConversationMessage], *, model: str | None = None) -> ChatTurn:
        """Answer a client-held conversation whose last message is the new user turn."""

        if not messages:
            raise InvalidQueryParameters("At least one message is required")
        *history, latest = messages
        context = ConversationContext(session_id=f"stateless-{uuid.uuid4().hex}", user_id="anonymous")
        context.messages.extend(history)
        try:
            return self.query(latest.content, context, model=model)
        finally:
            self._forget_state(context.session_id)

    def state_of(self, session_id: str) -> QueryState:
        with self._states_lock:
            return self._states.get(session_id, QueryState.IDLE)

    def end_session(self, session_id: str) -> bool:
        self._forget_state(session_id)
        return self.sessions.close(session_id)

    def check_readiness(self) -> Dict[str, str]:
        """Probe the embedder and the index; returns a mapping of failures."""

        failures: Dict[str, str] = {}
        try:
            self.embedder.embed_text("readiness probe")
        except RagError as error:
            failures["embedder"] = str(error)
        try:
            self.vector_index.count()
        except RagError as error:
            failures["vector_index"] = str(error)
        return failures

    def _set_state(self, session_id: str, state: QueryState) -> None:
        with self._states_lock:
            previous = self._states.get(session_id, QueryState.IDLE)
            self._states[session_id] = state
        emit_state_transition(session_id=session_id, previous=previous.value, current=state.value)

    def _forget_state(self, session_id: str) -> None:
        with self._states_lock:
            self._states.pop(session_id, None)

    @staticmethod
    def _raise_if_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _QueryCancelled()


@lru_cache()
def get_rag_service() -> RagOrchestrator:
    """Return the process-wide orchestrator built from the environment."""

    return RagOrchestrator(
        get_config(),
        embedder=get_embedding_model(),
        vector_index=get_vector_index(),
        chat_model=get_chat_model(),
    )


def reset_rag_service_cache() -> None:
    """Clear the cached orchestrator (primarily for testing)."""

    get_rag_service.cache_clear()  # type: ignore[attr-defined]


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
