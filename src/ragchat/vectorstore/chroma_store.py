"""Chroma vector index adapter."""
from __future__ import annotations

import itertools
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import chromadb

from ragchat.errors import InvalidQueryParameters, StoreUnavailable
from ragchat.ingest.models import DocumentChunk, DocumentMetadata

from .base import SearchResult, matches_prefix
from .similarity import as_vector, rank

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from chromadb.api import ClientAPI
    from chromadb.api.models.Collection import Collection

LOGGER = logging.getLogger(__name__)

_SEQUENCE_KEY = "sequence"


class ChromaVectorIndex:
    """Persist chunks in a Chroma collection using the cosine space."""

    backend_name = "chroma"

    def __init__(
        self,
        persist_dir: str | Path | None = None,
        *,
        collection_name: str = "company_documents",
        dimension: Optional[int] = None,
        client: Optional["ClientAPI"] = None,
    ) -> None:
        try:
            if client is not None:
                self._client = client
            elif persist_dir is not None:
                path = Path(persist_dir)
                path.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(path))
            else:
                self._client = chromadb.EphemeralClient()
            self._collection: "Collection" = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as exc:  # pragma: no cover - depends on chromadb runtime
            raise StoreUnavailable("Failed to initialise Chroma collection", cause=exc) from exc

        self.collection_name = collection_name
        self._dimension = dimension
        self._write_lock = threading.Lock()
        self._sequence = itertools.count(self._next_sequence_start())

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _next_sequence_start(self) -> int:
        records = self._collection.get(include=["metadatas", "embeddings"])
        metadatas = records.get("metadatas") or []
        embeddings = records.get("embeddings")
        if self._dimension is None and embeddings is not None and len(embeddings) > 0:
            self._dimension = len(embeddings[0])
        sequences = [int(meta.get(_SEQUENCE_KEY, 0)) for meta in metadatas if meta]
        return max(sequences, default=-1) + 1

    def store(self, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return

        with self._write_lock:
            dimension = self._dimension or len(chunks[0].embedding)
            embeddings = [as_vector(chunk.embedding, dimension=dimension).tolist() for chunk in chunks]
            metadatas = [self._to_metadata(chunk, next(self._sequence)) for chunk in chunks]
            try:
                self._collection.upsert(
                    ids=[chunk.id for chunk in chunks],
                    embeddings=embeddings,
                    documents=[chunk.content for chunk in chunks],
                    metadatas=metadatas,
                )
            except Exception as exc:
                raise StoreUnavailable("Failed to upsert chunks into Chroma", cause=exc) from exc
            self._dimension = dimension

    def search(self, query_vector: Sequence[float], top_k: int, min_score: float) -> List[SearchResult]:
        if top_k <= 0:
            raise InvalidQueryParameters(f"top_k must be a positive integer (got {top_k})")
        query = as_vector(query_vector, dimension=self._dimension)

        try:
            total = self._collection.count()
            if total == 0:
                return []
            # Over-fetch so ties at the cut-off can still be ordered by insertion.
            n_results = min(total, max(top_k * 2, top_k + 8))
            result = self._collection.query(
                query_embeddings=[query.tolist()],
                n_results=n_results,
                include=["documents", "metadatas", "distances", "embeddings"],
            )
        except Exception as exc:
            raise StoreUnavailable("Chroma query failed", cause=exc) from exc

        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]
        embeddings_batch = result.get("embeddings")
        embeddings = embeddings_batch[0] if embeddings_batch is not None else [()] * len(ids)

        candidates = []
        for chunk_id, document, metadata, distance, embedding in zip(
            ids, documents, metadatas, distances, embeddings
        ):
            metadata = dict(metadata or {})
            chunk = DocumentChunk(
                id=chunk_id,
                content=document or "",
                title=str(metadata.get("title", chunk_id)),
                embedding=tuple(float(value) for value in embedding),
                metadata=DocumentMetadata.from_dict(metadata),
            )
            score = 1.0 - float(distance)
            candidates.append((score, int(metadata.get(_SEQUENCE_KEY, 0)), chunk))

        ranked = rank(candidates, top_k=top_k, min_score=min_score)
        return [SearchResult(chunk=chunk, score=score) for score, chunk in ranked]

    def delete(self, chunk_id_prefix: str) -> int:
        if not chunk_id_prefix:
            return 0
        with self._write_lock:
            doomed = self.list_ids(chunk_id_prefix)
            if not doomed:
                return 0
            try:
                self._collection.delete(ids=doomed)
            except Exception as exc:
                raise StoreUnavailable("Failed to delete chunks from Chroma", cause=exc) from exc
        return len(doomed)

    def list_ids(self, prefix: Optional[str] = None) -> List[str]:
        try:
            ids = list(self._collection.get(include=[]).get("ids") or [])
        except Exception as exc:
            raise StoreUnavailable("Failed to list Chroma ids", cause=exc) from exc
        if prefix is None:
            return ids
        return [chunk_id for chunk_id in ids if matches_prefix(chunk_id, prefix)]

    def count(self) -> int:
        try:
            return int(self._collection.count())
        except Exception as exc:
            raise StoreUnavailable("Failed to count Chroma entries", cause=exc) from exc

    @staticmethod
    def _to_metadata(chunk: DocumentChunk, sequence: int) -> Dict[str, Any]:
        metadata = chunk.metadata.to_dict()
        # Chroma metadata values must be scalars.
        metadata["tags"] = ",".join(chunk.metadata.tags)
        metadata["title"] = chunk.title
        metadata[_SEQUENCE_KEY] = sequence
        return metadata


__all__ = ["ChromaVectorIndex"]
