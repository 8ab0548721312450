"""API router exposing ingestion, search and chat endpoints for the RAG service."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from ragchat.conversation import ConversationMessage
from ragchat.errors import (
    ChatModelFailure,
    DimensionMismatch,
    DocumentExtractionFailure,
    EmbeddingGenerationFailure,
    InvalidChunkConfiguration,
    InvalidQueryParameters,
    RagError,
    SessionBusy,
    SessionNotFound,
    StoreUnavailable,
    UnsupportedFileType,
)
from ragchat.services.rag import ChatTurn, RagOrchestrator, get_rag_service

router = APIRouter(tags=["rag"])

_STATUS_BY_ERROR: tuple[tuple[type[RagError], int], ...] = (
    (UnsupportedFileType, 415),
    (InvalidChunkConfiguration, 400),
    (InvalidQueryParameters, 400),
    (DocumentExtractionFailure, 422),
    (SessionNotFound, 404),
    (SessionBusy, 409),
    (EmbeddingGenerationFailure, 502),
    (ChatModelFailure, 502),
    (StoreUnavailable, 503),
    (DimensionMismatch, 500),
)


def _http_error(exc: RagError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


class IngestResponse(BaseModel):
    """Response body returned from the document upload endpoint."""

    status: str
    document_id: str
    file_name: str
    chunk_count: int


class DeleteResponse(BaseModel):
    identifier: str
    removed: int


class SearchRequest(BaseModel):
    """Request body accepted by the search endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=1, description="Free-text query to match against indexed chunks.")
    top_k: int | None = Field(
        None, alias="topK", ge=1, le=50, description="Maximum number of results; defaults to SEARCH_TOP_K."
    )
    threshold: float | None = Field(
        None, ge=-1.0, le=1.0, description="Minimum cosine similarity; defaults to SIMILARITY_THRESHOLD."
    )


class SearchResultItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    content_preview: str = Field(alias="contentPreview")
    department: str


class SearchResponse(BaseModel):
    results: list[SearchResultItem]


class ChatMessagePayload(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    """Stateless chat: the client sends the whole conversation each time."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    messages: list[ChatMessagePayload] = Field(..., min_length=1)
    model_id: str | None = Field(None, alias="modelId")


class ChatResponse(BaseModel):
    response: str
    model: str


class SessionMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    content: str = Field(..., min_length=1)
    user_id: str = Field("anonymous", alias="userId")
    model_id: str | None = Field(None, alias="modelId")


class SessionMessageResponse(BaseModel):
    response: str
    model: str
    failed: bool
    sources: list[str]


class StoredMessage(BaseModel):
    role: str
    content: str
    timestamp: datetime


class SessionHistoryResponse(BaseModel):
    session_id: str
    user_id: str
    messages: list[StoredMessage]


class SessionClosedResponse(BaseModel):
    session_id: str
    closed: bool


class EmbeddingRequest(BaseModel):
    text: str = Field(..., min_length=1)


class EmbeddingResponse(BaseModel):
    embedding: list[float]
    dimension: int
    model: str


def _split_tags(raw: str) -> list[str]:
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


@router.post("/documents", response_model=IngestResponse)
async def upload_document(
    file: UploadFile = File(...),
    department: str = Form(""),
    tags: str = Form(""),
    rag_service: RagOrchestrator = Depends(get_rag_service),
) -> IngestResponse:
    """Extract, chunk, embed and index one uploaded document."""

    if not file.filename:
        raise HTTPException(status_code=400, detail="Uploaded file must have a name")
    file_bytes = await file.read()
    try:
        result = await run_in_threadpool(
            rag_service.ingest,
            file_bytes,
            file.filename,
            department=department,
            tags=_split_tags(tags),
        )
    except RagError as exc:
        raise _http_error(exc) from exc
    return IngestResponse(
        status="ok",
        document_id=result.document_id,
        file_name=result.file_name,
        chunk_count=result.chunk_count,
    )


@router.delete("/documents/{identifier}", response_model=DeleteResponse)
def delete_document(
    identifier: str,
    rag_service: RagOrchestrator = Depends(get_rag_service),
) -> DeleteResponse:
    """Remove a document (all of its chunks) or a single chunk."""

    try:
        removed = rag_service.delete_document(identifier)
    except RagError as exc:
        raise _http_error(exc) from exc
    return DeleteResponse(identifier=identifier, removed=removed)


@router.post("/search", response_model=SearchResponse)
def search_documents(
    request: SearchRequest,
    rag_service: RagOrchestrator = Depends(get_rag_service),
) -> SearchResponse:
    if not request.query.strip():
        raise HTTPException(status_code=422, detail="Query must not be empty")
    try:
        hits = rag_service.search(request.query, top_k=request.top_k, threshold=request.threshold)
    except RagError as exc:
        raise _http_error(exc) from exc
    return SearchResponse(
        results=[
            SearchResultItem(
                id=hit.id,
                title=hit.title,
                content_preview=hit.content_preview,
                department=hit.department,
            )
            for hit in hits
        ]
    )


@router.post("/chat", response_model=ChatResponse)
def chat(
    request: ChatRequest,
    rag_service: RagOrchestrator = Depends(get_rag_service),
) -> ChatResponse:
    """Answer the last message of a client-held conversation."""

    messages = [ConversationMessage(role=item.role, content=item.content) for item in request.messages]
    try:
        turn: ChatTurn = rag_service.reply(messages, model=request.model_id)
    except RagError as exc:
        raise _http_error(exc) from exc
    return ChatResponse(response=turn.response, model=turn.model)


@router.post("/sessions/{session_id}/messages", response_model=SessionMessageResponse)
def post_session_message(
    session_id: str,
    request: SessionMessageRequest,
    rag_service: RagOrchestrator = Depends(get_rag_service),
) -> SessionMessageResponse:
    """Run one turn of a server-held conversation."""

    try:
        turn = rag_service.chat(
            session_id,
            request.content,
            user_id=request.user_id,
            model=request.model_id,
        )
    except RagError as exc:
        raise _http_error(exc) from exc
    return SessionMessageResponse(
        response=turn.response,
        model=turn.model,
        failed=turn.failed,
        sources=turn.sources,
    )


@router.get("/sessions/{session_id}/messages", response_model=SessionHistoryResponse)
def get_session_messages(
    session_id: str,
    rag_service: RagOrchestrator = Depends(get_rag_service),
) -> SessionHistoryResponse:
    try:
        context = rag_service.sessions.get(session_id)
    except RagError as exc:
        raise _http_error(exc) from exc
    return SessionHistoryResponse(
        session_id=context.session_id,
        user_id=context.user_id,
        messages=[
            StoredMessage(role=message.role, content=message.content, timestamp=message.timestamp)
            for message in context.messages
        ],
    )


@router.delete("/sessions/{session_id}", response_model=SessionClosedResponse)
def close_session(
    session_id: str,
    rag_service: RagOrchestrator = Depends(get_rag_service),
) -> SessionClosedResponse:
    return SessionClosedResponse(session_id=session_id, closed=rag_service.end_session(session_id))


@router.post("/embedding", response_model=EmbeddingResponse)
def create_embedding(
    request: EmbeddingRequest,
    rag_service: RagOrchestrator = Depends(get_rag_service),
) -> EmbeddingResponse:
    """Return the raw embedding vector of a text."""

    try:
        vector = rag_service.embed(request.text)
    except RagError as exc:
        raise _http_error(exc) from exc
    return EmbeddingResponse(embedding=vector, dimension=len(vector), model=rag_service.embedder.model_name)
