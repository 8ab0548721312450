"""Provider interfaces and offline implementations for embeddings and chat."""
from __future__ import annotations

from .base import ChatCompletion, ChatModel, EmbeddingProvider
from .hashing_embedding import HashingEmbeddingProvider
from .mock_llm import MockChatModel

__all__ = [
    "ChatCompletion",
    "ChatModel",
    "EmbeddingProvider",
    "HashingEmbeddingProvider",
    "MockChatModel",
]
