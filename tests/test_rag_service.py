from __future__ import annotations

import string
import threading
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

import pytest

from ragchat.config import RagConfig
from ragchat.conversation import ConversationContext, ConversationMessage
from ragchat.embeddings import EmbeddingModel
from ragchat.errors import (
    DimensionMismatch,
    EmbeddingGenerationFailure,
    SessionBusy,
    StoreUnavailable,
    UnsupportedFileType,
)
from ragchat.ingest import DocumentChunk
from ragchat.prompt_builder import NO_CONTEXT_TEXT
from ragchat.providers import ChatCompletion, EmbeddingProvider, HashingEmbeddingProvider, MockChatModel
from ragchat.services.rag import APOLOGY_MESSAGE, QueryState, RagOrchestrator
from ragchat.vectorstore import InMemoryVectorIndex


def _context(session_id: str = "session-1") -> ConversationContext:
    return ConversationContext(session_id=session_id, user_id="tester")


class BrokenEmbeddingProvider(EmbeddingProvider):
    model_name = "broken"

    def __init__(self) -> None:
        self.calls = 0

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls += 1
        raise TimeoutError("embedding request timed out")


class UnavailableIndex(InMemoryVectorIndex):
    def __init__(self) -> None:
        super().__init__()
        self.store_calls = 0

    def store(self, chunks: Sequence[DocumentChunk]) -> None:
        self.store_calls += 1
        raise StoreUnavailable("index offline")


def test_ingest_splits_text_into_overlapping_chunks(
    orchestrator: RagOrchestrator, vector_index: InMemoryVectorIndex
) -> None:
    text = "".join(string.ascii_letters[i % 52] for i in range(2500))

    result = orchestrator.ingest(text.encode("utf-8"), "policy.txt", department="HR", tags=["leave", " ", "leave"])

    assert result.chunk_count == 3
    assert result.document_id == "policy.txt"
    assert sorted(vector_index.list_ids()) == ["policy.txt_0", "policy.txt_1", "policy.txt_2"]
    chunks = [
        hit.chunk
        for hit in vector_index.search(orchestrator.embed(text[:1000]), top_k=3, min_score=-1.0)
    ]
    by_id = {chunk.id: chunk for chunk in chunks}
    contents = [by_id[f"policy.txt_{i}"].content for i in range(3)]
    assert all(len(content) <= 1000 for content in contents)
    for current, nxt in zip(contents, contents[1:]):
        assert current[-200:] == nxt[:200]
    first = by_id["policy.txt_0"]
    assert first.title == "policy.txt - Chunk 1"
    assert first.metadata.department == "HR"
    assert first.metadata.tags == ("leave",)
    assert first.metadata.file_type == "txt"


def test_query_without_documents_reports_no_relevant_content(orchestrator: RagOrchestrator, chat_model) -> None:
    context = _context()

    turn = orchestrator.query("What is the travel policy?", context)

    assert turn.failed is False
    assert turn.response == "MOCK_ANSWER: What is the travel policy?"
    assert turn.sources == []
    system_message = chat_model.requests[0][0]
    assert system_message["role"] == "system"
    assert NO_CONTEXT_TEXT in system_message["content"]
    assert [message.role for message in context.messages] == ["user", "assistant"]


def test_search_finds_department_document(orchestrator: RagOrchestrator) -> None:
    orchestrator.ingest(
        b"Parental leave lasts twelve weeks for every employee.",
        "policy.txt",
        department="HR",
    )
    orchestrator.ingest(b"Quarterly revenue grew by four percent.", "finance.txt", department="Finance")

    hits = orchestrator.search("parental leave", top_k=5, threshold=0.3)

    assert hits
    assert hits[0].id == "policy.txt_0"
    assert hits[0].department == "HR"
    assert hits[0].title == "policy.txt - Chunk 1"
    assert hits[0].content_preview.startswith("Parental leave")
    assert all(hit.id != "finance.txt_0" for hit in hits)


def test_chat_model_failure_appends_single_apology(
    config: RagConfig, embedder: EmbeddingModel, vector_index: InMemoryVectorIndex, failing_chat_model
) -> None:
    orchestrator = RagOrchestrator(
        config, embedder=embedder, vector_index=vector_index, chat_model=failing_chat_model
    )
    context = _context()

    turn = orchestrator.query("Summarise the handbook", context)

    assert turn.failed is True
    assert turn.response == APOLOGY_MESSAGE
    assert [(message.role, message.content) for message in context.messages] == [
        ("user", "Summarise the handbook"),
        ("assistant", APOLOGY_MESSAGE),
    ]
    assert failing_chat_model.calls == 1
    assert orchestrator.state_of(context.session_id) is QueryState.IDLE


def test_embedding_failure_during_query_degrades_to_apology(
    config: RagConfig, vector_index: InMemoryVectorIndex, chat_model
) -> None:
    orchestrator = RagOrchestrator(
        config, embedder=BrokenEmbeddingProvider(), vector_index=vector_index, chat_model=chat_model
    )
    context = _context()

    turn = orchestrator.query("hello", context)

    assert turn.failed is True
    assert [message.content for message in context.messages] == ["hello", APOLOGY_MESSAGE]
    assert chat_model.requests == []


def test_embedding_failure_during_ingest_stores_nothing(
    config: RagConfig, vector_index: InMemoryVectorIndex, chat_model
) -> None:
    provider = BrokenEmbeddingProvider()
    orchestrator = RagOrchestrator(config, embedder=provider, vector_index=vector_index, chat_model=chat_model)

    with pytest.raises(EmbeddingGenerationFailure):
        orchestrator.ingest(b"Some text to index", "notes.txt")

    assert provider.calls == config.embedding_retries
    assert vector_index.count() == 0


def test_unsupported_file_type_stores_nothing(
    orchestrator: RagOrchestrator, vector_index: InMemoryVectorIndex
) -> None:
    with pytest.raises(UnsupportedFileType):
        orchestrator.ingest(b"\x89PNG", "diagram.png")

    assert vector_index.count() == 0


def test_store_outage_is_retried_then_surfaced(config: RagConfig, embedder: EmbeddingModel, chat_model) -> None:
    index = UnavailableIndex()
    orchestrator = RagOrchestrator(config, embedder=embedder, vector_index=index, chat_model=chat_model)

    with pytest.raises(StoreUnavailable):
        orchestrator.ingest(b"Some text to index", "notes.txt")

    assert index.store_calls == config.store_retries
    assert index.count() == 0


def test_dimension_mismatch_is_not_retried(config: RagConfig, embedder: EmbeddingModel, chat_model) -> None:
    index = InMemoryVectorIndex(dimension=3)
    orchestrator = RagOrchestrator(config, embedder=embedder, vector_index=index, chat_model=chat_model)

    with pytest.raises(DimensionMismatch):
        orchestrator.ingest(b"Some text to index", "notes.txt")

    assert index.count() == 0


def test_reingesting_shorter_document_removes_stale_chunks(
    config: RagConfig, embedder: EmbeddingModel, vector_index: InMemoryVectorIndex, chat_model
) -> None:
    small_chunks = replace(config, chunk_size=20, chunk_overlap=0)
    orchestrator = RagOrchestrator(small_chunks, embedder=embedder, vector_index=vector_index, chat_model=chat_model)

    first = orchestrator.ingest(b"a" * 60, "doc.txt")
    second = orchestrator.ingest(b"b" * 15, "doc.txt")

    assert first.chunk_count == 3
    assert second.chunk_count == 1
    assert second.stale_removed == 2
    assert vector_index.list_ids() == ["doc.txt_0"]


def test_delete_document_removes_all_chunks(
    config: RagConfig, embedder: EmbeddingModel, vector_index: InMemoryVectorIndex, chat_model
) -> None:
    small_chunks = replace(config, chunk_size=20, chunk_overlap=5)
    orchestrator = RagOrchestrator(small_chunks, embedder=embedder, vector_index=vector_index, chat_model=chat_model)
    orchestrator.ingest(b"vacation days and vacation rules for staff", "leave.txt")
    orchestrator.ingest(b"vacation overview", "summary.txt")

    removed = orchestrator.delete_document("leave.txt")

    assert removed >= 2
    hits = orchestrator.search("vacation", threshold=0.0)
    assert [hit.id for hit in hits] == ["summary.txt_0"]
    assert orchestrator.delete_document("leave.txt") == 0
    assert orchestrator.delete_document("   ") == 0


def test_history_window_limits_messages_sent_to_model(
    config: RagConfig, embedder: EmbeddingModel, vector_index: InMemoryVectorIndex, chat_model
) -> None:
    orchestrator = RagOrchestrator(
        replace(config, history_window=2), embedder=embedder, vector_index=vector_index, chat_model=chat_model
    )
    context = _context()

    orchestrator.query("first", context)
    orchestrator.query("second", context)
    orchestrator.query("third", context)

    last_request = chat_model.requests[-1]
    assert [message["role"] for message in last_request] == ["system", "user", "assistant", "user"]
    assert [message["content"] for message in last_request[1:]] == [
        "second",
        "MOCK_ANSWER: second",
        "third",
    ]
    assert len(context.messages) == 6


def test_reply_maps_unknown_roles_for_the_model(orchestrator: RagOrchestrator, chat_model) -> None:
    messages = [
        ConversationMessage(role="system", content="You are helpful"),
        ConversationMessage(role="assistant", content="Hello"),
        ConversationMessage(role="user", content="What is the dress code?"),
    ]

    turn = orchestrator.reply(messages, model="custom-model")

    assert turn.model == "custom-model"
    assert turn.response == "MOCK_ANSWER: What is the dress code?"
    sent = chat_model.requests[0]
    assert [message["role"] for message in sent] == ["system", "user", "assistant", "user"]
    assert messages[0].role == "system"


def test_cancelled_query_appends_nothing(orchestrator: RagOrchestrator) -> None:
    cancel = threading.Event()
    cancel.set()
    context = _context()

    turn = orchestrator.query("anything", context, cancel_event=cancel)

    assert turn.cancelled is True
    assert context.messages == []


def test_cancellation_during_generation_discards_reply(
    config: RagConfig, embedder: EmbeddingModel, vector_index: InMemoryVectorIndex
) -> None:
    cancel = threading.Event()

    class CancellingModel(MockChatModel):
        def complete(self, messages: Sequence[Dict[str, str]], *, model: Optional[str] = None) -> ChatCompletion:
            cancel.set()
            return super().complete(messages, model=model)

    orchestrator = RagOrchestrator(config, embedder=embedder, vector_index=vector_index, chat_model=CancellingModel())
    context = _context()

    turn = orchestrator.query("anything", context, cancel_event=cancel)

    assert turn.cancelled is True
    assert turn.response == ""
    assert context.messages == []
    assert orchestrator.state_of(context.session_id) is QueryState.IDLE


def test_second_turn_for_busy_session_is_rejected(
    config: RagConfig, embedder: EmbeddingModel, vector_index: InMemoryVectorIndex
) -> None:
    entered = threading.Event()
    release = threading.Event()

    class BlockingModel(MockChatModel):
        def complete(self, messages: Sequence[Dict[str, str]], *, model: Optional[str] = None) -> ChatCompletion:
            entered.set()
            release.wait(timeout=5)
            return super().complete(messages, model=model)

    orchestrator = RagOrchestrator(config, embedder=embedder, vector_index=vector_index, chat_model=BlockingModel())
    worker = threading.Thread(target=orchestrator.chat, args=("s1", "first question"))
    worker.start()
    try:
        assert entered.wait(timeout=5)
        assert orchestrator.state_of("s1") is QueryState.GENERATING
        with pytest.raises(SessionBusy):
            orchestrator.chat("s1", "second question")
    finally:
        release.set()
        worker.join(timeout=5)

    history = orchestrator.sessions.get("s1").messages
    assert [message.content for message in history] == ["first question", "MOCK_ANSWER: first question"]
    assert orchestrator.state_of("s1") is QueryState.IDLE


def test_chat_keeps_history_per_session(orchestrator: RagOrchestrator) -> None:
    orchestrator.chat("a", "hello from a", user_id="alice")
    orchestrator.chat("b", "hello from b", user_id="bob")

    assert [message.content for message in orchestrator.sessions.get("a").messages] == [
        "hello from a",
        "MOCK_ANSWER: hello from a",
    ]
    assert orchestrator.sessions.get("b").user_id == "bob"
    assert orchestrator.end_session("a") is True
    assert orchestrator.end_session("a") is False


def test_query_sources_reference_retrieved_chunks(orchestrator: RagOrchestrator, chat_model) -> None:
    orchestrator.ingest(b"Expense reports are due on Friday.", "expenses.txt", department="Finance")

    turn = orchestrator.query("When are expense reports due?", _context())

    assert turn.sources == ["expenses.txt_0"]
    assert "Document: expenses.txt - Chunk 1" in chat_model.requests[0][0]["content"]


def test_readiness_reports_failing_embedder(config: RagConfig, vector_index: InMemoryVectorIndex, chat_model) -> None:
    healthy = RagOrchestrator(
        config,
        embedder=EmbeddingModel(HashingEmbeddingProvider()),
        vector_index=vector_index,
        chat_model=chat_model,
    )
    broken = RagOrchestrator(
        config, embedder=BrokenEmbeddingProvider(), vector_index=vector_index, chat_model=chat_model
    )

    assert healthy.check_readiness() == {}
    assert set(broken.check_readiness()) == {"embedder"}


def test_delete_document_keeps_documents_sharing_the_name_prefix(orchestrator: RagOrchestrator, vector_index) -> None:
    orchestrator.ingest(b"Original handbook text.", "a.txt")
    orchestrator.ingest(b"Revised handbook text.", "a.txt_v2.txt")

    assert orchestrator.delete_document("a.txt") == 1

    assert vector_index.list_ids() == ["a.txt_v2.txt_0"]


def test_reingest_keeps_chunks_of_documents_sharing_the_name_prefix(
    config: RagConfig, embedder: EmbeddingModel, vector_index: InMemoryVectorIndex, chat_model
) -> None:
    small_chunks = replace(config, chunk_size=20, chunk_overlap=0)
    orchestrator = RagOrchestrator(small_chunks, embedder=embedder, vector_index=vector_index, chat_model=chat_model)
    orchestrator.ingest(b"c" * 40, "a.txt_v2.txt")
    orchestrator.ingest(b"a" * 40, "a.txt")

    second = orchestrator.ingest(b"b" * 15, "a.txt")

    assert second.stale_removed == 1
    assert sorted(vector_index.list_ids()) == ["a.txt_0", "a.txt_v2.txt_0", "a.txt_v2.txt_1"]


def test_delete_racing_ingest_leaves_whole_document_or_nothing(
    config: RagConfig, embedder: EmbeddingModel, chat_model
) -> None:
    small_chunks = replace(config, chunk_size=20, chunk_overlap=0)
    new_ids = {"doc.txt_0", "doc.txt_1", "doc.txt_2"}

    for _ in range(20):
        vector_index = InMemoryVectorIndex()
        orchestrator = RagOrchestrator(
            small_chunks, embedder=embedder, vector_index=vector_index, chat_model=chat_model
        )
        orchestrator.ingest(b"o" * 100, "doc.txt")
        barrier = threading.Barrier(2)
        errors: List[BaseException] = []

        def run(action) -> None:
            try:
                barrier.wait()
                action()
            except BaseException as error:  # pragma: no cover - reported below
                errors.append(error)

        threads = [
            threading.Thread(target=run, args=(lambda: orchestrator.ingest(b"n" * 60, "doc.txt"),)),
            threading.Thread(target=run, args=(lambda: orchestrator.delete_document("doc.txt"),)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert set(vector_index.list_ids()) in (new_ids, set())
