"""Offline embedding provider for tests and development."""
from __future__ import annotations

import hashlib
import math
import re
from collections import Counter
from typing import List, Sequence

from .base import EmbeddingProvider

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class HashingEmbeddingProvider(EmbeddingProvider):
    """Return deterministic bag-of-words vectors using the hashing trick.

    Texts sharing words get a positive cosine similarity, texts without common
    words score zero, so retrieval behaves sensibly without a model download.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be a positive integer")
        self.dimension = dimension
        self.model_name = f"hashing-{dimension}"

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        counts = Counter(_TOKEN_RE.findall(text.lower()))
        for token, count in counts.items():
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            vector[int.from_bytes(digest, "big") % self.dimension] += float(count)
        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
