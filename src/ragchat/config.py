"""Runtime configuration for the document chat service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

LOGGER = logging.getLogger(__name__)

DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"


def _str_from_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _optional_int_from_env(name: str) -> int | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; ignoring", name, value)
        return None


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


@dataclass(slots=True)
class RagConfig:
    """Everything the orchestrator needs to wire its collaborators."""

    chat_backend: str = "mock"
    chat_endpoint: str = DEFAULT_OLLAMA_ENDPOINT
    chat_model: str = "llama3.1"
    embedding_backend: str = "hashing"
    embedding_endpoint: str = DEFAULT_OLLAMA_ENDPOINT
    embedding_model: str = "all-minilm"
    embedding_dimension: int | None = None
    vector_store: str = "memory"
    chroma_persist_dir: str = "chroma_db"
    collection_name: str = "company_documents"
    chunk_size: int = 1000
    chunk_overlap: int = 200
    chat_top_k: int = 3
    search_top_k: int = 5
    similarity_threshold: float = 0.7
    history_window: int = 10
    request_timeout_seconds: float = 60.0
    embedding_retries: int = 3
    store_retries: int = 3
    retry_backoff_seconds: float = 0.5

    @classmethod
    def from_env(cls) -> "RagConfig":
        defaults = cls()
        return cls(
            chat_backend=_str_from_env("LLM_BACKEND", defaults.chat_backend).lower(),
            chat_endpoint=_str_from_env("CHAT_ENDPOINT", defaults.chat_endpoint),
            chat_model=_str_from_env("CHAT_MODEL_ID", defaults.chat_model),
            embedding_backend=_str_from_env("EMBEDDING_BACKEND", defaults.embedding_backend).lower(),
            embedding_endpoint=_str_from_env("EMBEDDING_ENDPOINT", defaults.embedding_endpoint),
            embedding_model=_str_from_env("EMBEDDING_MODEL_ID", defaults.embedding_model),
            embedding_dimension=_optional_int_from_env("EMBEDDING_DIMENSION"),
            vector_store=_str_from_env("VECTOR_STORE", defaults.vector_store).lower(),
            chroma_persist_dir=_str_from_env("CHROMA_PERSIST_DIR", defaults.chroma_persist_dir),
            collection_name=_str_from_env("CHROMA_COLLECTION", defaults.collection_name),
            chunk_size=_int_from_env("CHUNK_SIZE", defaults.chunk_size),
            chunk_overlap=_int_from_env("CHUNK_OVERLAP", defaults.chunk_overlap),
            chat_top_k=_int_from_env("CHAT_TOP_K", defaults.chat_top_k),
            search_top_k=_int_from_env("SEARCH_TOP_K", defaults.search_top_k),
            similarity_threshold=_float_from_env("SIMILARITY_THRESHOLD", defaults.similarity_threshold),
            history_window=_int_from_env("HISTORY_WINDOW", defaults.history_window),
            request_timeout_seconds=_float_from_env(
                "REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds
            ),
            embedding_retries=_int_from_env("EMBEDDING_RETRIES", defaults.embedding_retries),
            store_retries=_int_from_env("STORE_RETRIES", defaults.store_retries),
            retry_backoff_seconds=_float_from_env("RETRY_BACKOFF_SECONDS", defaults.retry_backoff_seconds),
        )


@lru_cache()
def get_config() -> RagConfig:
    """Return the process-wide configuration read from the environment."""

    return RagConfig.from_env()


def reset_config_cache() -> None:
    """Clear the cached configuration (primarily for testing)."""

    get_config.cache_clear()  # type: ignore[attr-defined]
