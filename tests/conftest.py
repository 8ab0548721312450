"""Shared fixtures wiring the orchestrator to offline backends."""
from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Sequence

import pytest

from ragchat.config import RagConfig, reset_config_cache
from ragchat.embeddings import EmbeddingModel, reset_embedding_model_cache
from ragchat.errors import ChatModelFailure
from ragchat.llm import reset_chat_model_cache
from ragchat.providers import ChatCompletion, ChatModel, HashingEmbeddingProvider, MockChatModel
from ragchat.services.rag import RagOrchestrator, reset_rag_service_cache
from ragchat.vectorstore import InMemoryVectorIndex, reset_vector_index_cache


class FailingChatModel(ChatModel):
    """Chat model that always fails, counting the attempts."""

    model_name = "failing"

    def __init__(self) -> None:
        self.calls = 0

    def complete(self, messages: Sequence[Dict[str, str]], *, model: Optional[str] = None) -> ChatCompletion:
        self.calls += 1
        raise ChatModelFailure("model offline")


class RecordingChatModel(MockChatModel):
    """Mock chat model that keeps every message list it receives."""

    def __init__(self) -> None:
        super().__init__()
        self.requests: List[List[Dict[str, str]]] = []

    def complete(self, messages: Sequence[Dict[str, str]], *, model: Optional[str] = None) -> ChatCompletion:
        self.requests.append([dict(message) for message in messages])
        return super().complete(messages, model=model)


@pytest.fixture(autouse=True)
def _reset_caches(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    for name in ("LLM_BACKEND", "EMBEDDING_BACKEND", "VECTOR_STORE", "EMBEDDING_DIMENSION"):
        monkeypatch.delenv(name, raising=False)
    reset_config_cache()
    reset_embedding_model_cache()
    reset_chat_model_cache()
    reset_vector_index_cache()
    reset_rag_service_cache()
    yield
    reset_config_cache()
    reset_embedding_model_cache()
    reset_chat_model_cache()
    reset_vector_index_cache()
    reset_rag_service_cache()


@pytest.fixture
def config() -> RagConfig:
    return RagConfig(
        similarity_threshold=0.1,
        retry_backoff_seconds=0.0,
        embedding_retries=3,
        store_retries=3,
    )


@pytest.fixture
def embedder() -> EmbeddingModel:
    return EmbeddingModel(HashingEmbeddingProvider(dimension=256))


@pytest.fixture
def vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture
def chat_model() -> RecordingChatModel:
    return RecordingChatModel()


@pytest.fixture
def failing_chat_model() -> FailingChatModel:
    return FailingChatModel()


@pytest.fixture
def orchestrator(
    config: RagConfig,
    embedder: EmbeddingModel,
    vector_index: InMemoryVectorIndex,
    chat_model: RecordingChatModel,
) -> RagOrchestrator:
    return RagOrchestrator(config, embedder=embedder, vector_index=vector_index, chat_model=chat_model)
