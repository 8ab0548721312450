"""Base interfaces for embedding and chat-completion backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

__all__ = ["ChatCompletion", "ChatModel", "EmbeddingProvider"]


class EmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    model_name: str = "unknown"

    @abstractmethod
    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """Encode the provided texts into embeddings of one fixed dimension."""


@dataclass(frozen=True, slots=True)
class ChatCompletion:
    """Text produced by a chat model together with the model that produced it."""

    text: str
    model: str


class ChatModel(ABC):
    """Abstract interface for chat-completion providers."""

    model_name: str = "unknown"

    @abstractmethod
    def complete(self, messages: Sequence[Dict[str, str]], *, model: Optional[str] = None) -> ChatCompletion:
        """Generate the assistant reply for *messages*."""
