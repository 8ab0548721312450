"""In-memory vector index used by default and in tests."""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from ragchat.errors import InvalidQueryParameters
from ragchat.ingest.models import DocumentChunk

from .base import SearchResult, matches_prefix
from .similarity import as_vector, cosine_similarities, rank

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _IndexedEntry:
    """Internal representation of a stored chunk."""

    chunk: DocumentChunk
    vector: np.ndarray
    sequence: int


class InMemoryVectorIndex:
    """Keep chunks and their vectors in process memory.

    Writers swap whole entries under a short lock; searches rank a snapshot of
    the entries without holding it.
    """

    backend_name = "memory"

    def __init__(self, *, dimension: Optional[int] = None) -> None:
        self._dimension = dimension
        self._entries: Dict[str, _IndexedEntry] = {}
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def store(self, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return

        with self._lock:
            dimension = self._dimension or len(chunks[0].embedding)
            prepared = [(chunk, as_vector(chunk.embedding, dimension=dimension)) for chunk in chunks]
            self._dimension = dimension
            for chunk, vector in prepared:
                # Re-inserting moves the entry to the end of the insertion order.
                self._entries.pop(chunk.id, None)
                self._entries[chunk.id] = _IndexedEntry(chunk=chunk, vector=vector, sequence=next(self._sequence))
        LOGGER.debug("Stored %s chunks in memory index", len(prepared))

    def search(self, query_vector: Sequence[float], top_k: int, min_score: float) -> List[SearchResult]:
        if top_k <= 0:
            raise InvalidQueryParameters(f"top_k must be a positive integer (got {top_k})")

        with self._lock:
            entries = list(self._entries.values())
            dimension = self._dimension

        query = as_vector(query_vector, dimension=dimension)
        if not entries:
            return []

        matrix = np.vstack([entry.vector for entry in entries])
        scores = cosine_similarities(query, matrix)
        ranked = rank(
            ((float(score), entry.sequence, entry) for score, entry in zip(scores, entries)),
            top_k=top_k,
            min_score=min_score,
        )
        return [SearchResult(chunk=entry.chunk, score=score) for score, entry in ranked]

    def delete(self, chunk_id_prefix: str) -> int:
        if not chunk_id_prefix:
            return 0
        with self._lock:
            doomed = [chunk_id for chunk_id in self._entries if matches_prefix(chunk_id, chunk_id_prefix)]
            for chunk_id in doomed:
                del self._entries[chunk_id]
        LOGGER.debug("Deleted %s chunks matching %s", len(doomed), chunk_id_prefix)
        return len(doomed)

    def list_ids(self, prefix: Optional[str] = None) -> List[str]:
        with self._lock:
            ids = list(self._entries)
        if prefix is None:
            return ids
        return [chunk_id for chunk_id in ids if matches_prefix(chunk_id, prefix)]

    def count(self) -> int:
        return len(self._entries)
