"""Embedding backends and the instrumented front used by the orchestrator."""
from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

import httpx

from ragchat.config import RagConfig, get_config
from ragchat.errors import EmbeddingGenerationFailure
from ragchat.providers import EmbeddingProvider, HashingEmbeddingProvider
from ragchat.retrying import call_with_retry
from ragchat.telemetry import emit_embeddings_event

LOGGER_NAME = "ragchat.embeddings"
DEFAULT_HASHING_DIMENSION = 256

LOGGER = logging.getLogger(LOGGER_NAME)


@runtime_checkable
class Embedder(Protocol):
    """Anything that turns texts into equally sized vectors."""

    @property
    def model_name(self) -> str:
        ...

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Request embeddings from an Ollama server's ``/api/embed`` endpoint."""

    def __init__(
        self,
        model_name: str,
        *,
        endpoint: str,
        timeout_seconds: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.model_name = model_name
        self._client = client or httpx.Client(base_url=endpoint, timeout=timeout_seconds)

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        try:
            response = self._client.post("/api/embed", json={"model": self.model_name, "input": list(texts)})
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise EmbeddingGenerationFailure("Embedding request timed out", cause=exc) from exc
        except httpx.HTTPError as exc:
            raise EmbeddingGenerationFailure(f"Embedding request failed: {exc}", cause=exc) from exc
        except ValueError as exc:
            raise EmbeddingGenerationFailure("Embedding service returned invalid JSON", cause=exc) from exc

        embeddings = payload.get("embeddings") if isinstance(payload, dict) else None
        if not isinstance(embeddings, list):
            raise EmbeddingGenerationFailure("Embedding service response has no 'embeddings' field")
        return embeddings

    def close(self) -> None:
        self._client.close()


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Local embeddings computed with a sentence-transformers model."""

    def __init__(self, model_name: str, *, device: str | None = None) -> None:
        from sentence_transformers import SentenceTransformer  # type: ignore import-not-found

        self.model_name = model_name
        self._model = SentenceTransformer(model_name, device=device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        embeddings = self._model.encode(
            list(texts),
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=False,
        )
        return embeddings.tolist()


class EmbeddingModel:
    """Wrap a provider with validation, bounded retries and telemetry.

    Every backend failure surfaces as :class:`EmbeddingGenerationFailure`; the
    provider is retried ``attempts`` times before the error propagates.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        attempts: int = 1,
        backoff_seconds: float = 0.0,
    ) -> None:
        self._provider = provider
        self._attempts = max(attempts, 1)
        self._backoff_seconds = backoff_seconds

    @property
    def model_name(self) -> str:
        return str(getattr(self._provider, "model_name", "unknown"))

    @property
    def dimension(self) -> Optional[int]:
        dimension = getattr(self._provider, "dimension", None)
        return int(dimension) if dimension is not None else None

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        started = time.perf_counter()
        try:
            embeddings = call_with_retry(
                lambda: self._embed_once(texts),
                retry_on=EmbeddingGenerationFailure,
                attempts=self._attempts,
                backoff_seconds=self._backoff_seconds,
                operation=f"embedding with {self.model_name}",
                logger=LOGGER,
            )
        except EmbeddingGenerationFailure as error:
            emit_embeddings_event(
                model=self.model_name,
                count=len(texts),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[str(error)],
            )
            raise

        emit_embeddings_event(
            model=self.model_name,
            count=len(texts),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return embeddings

    def embed_text(self, text: str) -> List[float]:
        return self.embed_texts([text])[0]

    def _embed_once(self, texts: Sequence[str]) -> List[List[float]]:
        try:
            vectors: Any = self._provider.embed_texts(texts)
        except EmbeddingGenerationFailure:
            raise
        except Exception as exc:
            raise EmbeddingGenerationFailure(f"Embedding backend failed: {exc}", cause=exc) from exc

        if len(vectors) != len(texts):
            raise EmbeddingGenerationFailure(
                f"Embedding backend returned {len(vectors)} vectors for {len(texts)} texts"
            )
        try:
            result = [[float(value) for value in vector] for vector in vectors]
        except (TypeError, ValueError) as exc:
            raise EmbeddingGenerationFailure("Embedding backend returned non-numeric values", cause=exc) from exc
        if any(not vector for vector in result):
            raise EmbeddingGenerationFailure("Embedding backend returned an empty vector")
        if len({len(vector) for vector in result}) > 1:
            raise EmbeddingGenerationFailure("Embedding backend returned vectors of different lengths")
        return result


def build_embedding_provider(config: RagConfig) -> EmbeddingProvider:
    backend = config.embedding_backend
    if backend == "hashing":
        return HashingEmbeddingProvider(config.embedding_dimension or DEFAULT_HASHING_DIMENSION)
    if backend == "ollama":
        return OllamaEmbeddingProvider(
            config.embedding_model,
            endpoint=config.embedding_endpoint,
            timeout_seconds=config.request_timeout_seconds,
        )
    if backend in {"sentence-transformers", "local"}:
        return SentenceTransformerEmbeddingProvider(config.embedding_model)
    raise ValueError(f"Unknown embedding backend: {backend!r}")


def build_embedding_model(config: RagConfig) -> EmbeddingModel:
    provider = build_embedding_provider(config)
    LOGGER.info("Using embedding backend %s (%s)", config.embedding_backend, provider.model_name)
    return EmbeddingModel(
        provider,
        attempts=config.embedding_retries,
        backoff_seconds=config.retry_backoff_seconds,
    )


@lru_cache()
def get_embedding_model() -> EmbeddingModel:
    """Return a cached embedding model instance."""

    return build_embedding_model(get_config())


def reset_embedding_model_cache() -> None:
    """Clear the cached embedding model instance (primarily for testing)."""

    get_embedding_model.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "Embedder",
    "EmbeddingModel",
    "OllamaEmbeddingProvider",
    "SentenceTransformerEmbeddingProvider",
    "build_embedding_model",
    "build_embedding_provider",
    "get_embedding_model",
    "reset_embedding_model_cache",
]
