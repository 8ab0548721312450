"""Cosine similarity ranking shared by the vector index backends."""
from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple, TypeVar

import numpy as np

from ragchat.errors import DimensionMismatch

T = TypeVar("T")

# Decimal places kept when cosine scores are thresholded, ordered and reported.
SCORE_DECIMALS = 6


def as_vector(values: Sequence[float], *, dimension: int | None = None) -> np.ndarray:
    """Return *values* as a 1-D float array, checking its length against *dimension*."""

    vector = np.asarray(values, dtype=np.float64)
    if vector.ndim != 1 or vector.shape[0] == 0:
        raise DimensionMismatch(f"Embedding must be a non-empty 1-D vector (got shape {vector.shape})")
    if dimension is not None and vector.shape[0] != dimension:
        raise DimensionMismatch(
            f"Embedding has {vector.shape[0]} dimensions but the index expects {dimension}"
        )
    return vector


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of *query* against every row of *matrix*.

    Rows or queries with a zero norm score ``0.0``.
    """

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    np.divide(dots, norms, out=scores, where=norms > 0)
    return np.clip(scores, -1.0, 1.0)


def rank(
    candidates: Iterable[Tuple[float, int, T]],
    *,
    top_k: int,
    min_score: float,
) -> List[Tuple[float, T]]:
    """Order ``(score, sequence, item)`` triples by descending score then sequence.

    Scores are rounded to :data:`SCORE_DECIMALS` before the threshold and the
    ordering are applied, and the rounded value is returned.
    """

    rounded = ((round(score, SCORE_DECIMALS), sequence, item) for score, sequence, item in candidates)
    kept = [candidate for candidate in rounded if candidate[0] >= min_score]
    kept.sort(key=lambda candidate: (-candidate[0], candidate[1]))
    return [(score, item) for score, _, item in kept[:top_k]]
