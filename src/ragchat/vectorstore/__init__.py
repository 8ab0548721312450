"""Vector index helpers backed by pluggable backends."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from ragchat.config import RagConfig, get_config
from ragchat.errors import DimensionMismatch, InvalidQueryParameters, StoreUnavailable

from .base import RetryingVectorIndex, SearchResult, VectorIndex, matches_prefix
from .memory_store import InMemoryVectorIndex

LOGGER = logging.getLogger(__name__)


def build_vector_index(config: RagConfig) -> RetryingVectorIndex:
    """Create the index selected by ``config.vector_store`` wrapped in the retry policy."""

    backend = config.vector_store
    if backend == "memory":
        index: VectorIndex = InMemoryVectorIndex(dimension=config.embedding_dimension)
    elif backend == "chroma":
        from .chroma_store import ChromaVectorIndex

        index = ChromaVectorIndex(
            config.chroma_persist_dir,
            collection_name=config.collection_name,
            dimension=config.embedding_dimension,
        )
    else:
        raise ValueError(f"Unsupported VECTOR_STORE backend: {backend!r}")

    LOGGER.info("Using %s vector index", index.backend_name)
    return RetryingVectorIndex(
        index,
        attempts=config.store_retries,
        backoff_seconds=config.retry_backoff_seconds,
    )


@lru_cache()
def get_vector_index() -> RetryingVectorIndex:
    """Return a lazily initialised vector index based on configuration."""

    return build_vector_index(get_config())


def reset_vector_index_cache() -> None:
    """Clear the cached vector index (primarily for testing)."""

    get_vector_index.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "DimensionMismatch",
    "InMemoryVectorIndex",
    "InvalidQueryParameters",
    "RetryingVectorIndex",
    "SearchResult",
    "StoreUnavailable",
    "VectorIndex",
    "build_vector_index",
    "get_vector_index",
    "matches_prefix",
    "reset_vector_index_cache",
]
