"""Contract shared by the vector index backends."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, TypeVar, runtime_checkable

from ragchat.errors import StoreUnavailable
from ragchat.ingest.models import CHUNK_ID_SEPARATOR, DocumentChunk
from ragchat.retrying import call_with_retry

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A stored chunk paired with its cosine similarity to the query."""

    chunk: DocumentChunk
    score: float


@runtime_checkable
class VectorIndex(Protocol):
    backend_name: str

    def store(self, chunks: Sequence[DocumentChunk]) -> None:
        """Insert *chunks*, replacing any entry with the same id."""

    def search(self, query_vector: Sequence[float], top_k: int, min_score: float) -> List[SearchResult]:
        """Return up to *top_k* results scoring at least *min_score*, best first."""

    def delete(self, chunk_id_prefix: str) -> int:
        """Remove the chunk or document identified by *chunk_id_prefix*."""

    def list_ids(self, prefix: Optional[str] = None) -> List[str]:
        """Return stored ids, optionally restricted to one document or chunk."""

    def count(self) -> int:
        """Return the number of stored chunks."""


def matches_prefix(chunk_id: str, prefix: str) -> bool:
    """Whether *chunk_id* is *prefix* itself or one of the chunks derived from it.

    Derived chunk ids are ``<prefix>_<index>``; ``a.txt_v2.txt_0`` belongs to
    ``a.txt_v2.txt``, not to ``a.txt``.
    """

    if chunk_id == prefix:
        return True
    return re.fullmatch(re.escape(prefix + CHUNK_ID_SEPARATOR) + r"\d+", chunk_id) is not None


class RetryingVectorIndex:
    """Retry :class:`StoreUnavailable` failures of a delegate index with backoff."""

    def __init__(self, delegate: VectorIndex, *, attempts: int = 3, backoff_seconds: float = 0.5) -> None:
        self._delegate = delegate
        self._attempts = attempts
        self._backoff_seconds = backoff_seconds

    @property
    def backend_name(self) -> str:
        return self._delegate.backend_name

    @property
    def delegate(self) -> VectorIndex:
        return self._delegate

    def _call(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        return call_with_retry(
            lambda: func(*args),
            retry_on=StoreUnavailable,
            attempts=self._attempts,
            backoff_seconds=self._backoff_seconds,
            operation=f"vectorstore.{operation}",
            logger=LOGGER,
        )

    def store(self, chunks: Sequence[DocumentChunk]) -> None:
        self._call("store", self._delegate.store, chunks)

    def search(self, query_vector: Sequence[float], top_k: int, min_score: float) -> List[SearchResult]:
        return self._call("search", self._delegate.search, query_vector, top_k, min_score)

    def delete(self, chunk_id_prefix: str) -> int:
        return self._call("delete", self._delegate.delete, chunk_id_prefix)

    def list_ids(self, prefix: Optional[str] = None) -> List[str]:
        return self._call("list_ids", self._delegate.list_ids, prefix)

    def count(self) -> int:
        return self._call("count", self._delegate.count)
