"""Chat model selection and caching."""
from __future__ import annotations

import logging
from functools import lru_cache

from ragchat.config import RagConfig, get_config
from ragchat.providers import ChatCompletion, ChatModel, MockChatModel

from .ollama import OllamaChatModel

LOGGER = logging.getLogger(__name__)


def build_chat_model(config: RagConfig) -> ChatModel:
    backend = config.chat_backend
    if backend == "mock":
        return MockChatModel()
    if backend == "ollama":
        return OllamaChatModel(
            config.chat_model,
            endpoint=config.chat_endpoint,
            timeout_seconds=config.request_timeout_seconds,
        )
    raise ValueError(f"Unknown LLM backend: {backend!r}")


@lru_cache()
def get_chat_model() -> ChatModel:
    """Return the chat model selected by ``LLM_BACKEND``."""

    model = build_chat_model(get_config())
    LOGGER.info("Using chat backend %s (%s)", type(model).__name__, model.model_name)
    return model


def reset_chat_model_cache() -> None:
    """Clear the cached chat model (primarily for testing)."""

    get_chat_model.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "ChatCompletion",
    "ChatModel",
    "MockChatModel",
    "OllamaChatModel",
    "build_chat_model",
    "get_chat_model",
    "reset_chat_model_cache",
]
