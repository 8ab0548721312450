"""Chunking utilities for breaking text into embedding-friendly units."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Sequence

from ragchat.errors import InvalidChunkConfiguration

BLOCK_SEPARATOR = "\n\n"
LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChunkingConfig:
    chunk_chars: int = 1000
    overlap_chars: int = 200

    def validate(self) -> None:
        if self.chunk_chars <= 0:
            raise InvalidChunkConfiguration(
                f"chunk size must be a positive integer (got {self.chunk_chars})"
            )
        if self.overlap_chars < 0:
            raise InvalidChunkConfiguration(
                f"overlap must be a non-negative integer (got {self.overlap_chars})"
            )
        if self.overlap_chars >= self.chunk_chars:
            raise InvalidChunkConfiguration(
                f"overlap ({self.overlap_chars}) must be smaller than chunk size ({self.chunk_chars})"
            )

    @property
    def stride(self) -> int:
        return self.chunk_chars - self.overlap_chars


class SlidingWindowChunker:
    """Split text into fixed-width, overlapping character windows."""

    def __init__(self, config: ChunkingConfig) -> None:
        config.validate()
        self.config = config

    def chunk(self, text_blocks: Sequence[str]) -> List[str]:
        text = BLOCK_SEPARATOR.join(text_blocks)
        chunks = [window for _, _, window in self._windows(text)]
        LOGGER.debug(
            "Chunked %s characters into %s windows (size=%s, overlap=%s)",
            len(text),
            len(chunks),
            self.config.chunk_chars,
            self.config.overlap_chars,
        )
        return chunks

    def _windows(self, text: str) -> Iterator[tuple[int, int, str]]:
        text_length = len(text)
        for start in range(0, text_length, self.config.stride):
            end = min(start + self.config.chunk_chars, text_length)
            window = text[start:end].strip()
            if window:
                yield start, end, window
            if end >= text_length:
                break


def chunk_text(text_blocks: Sequence[str], max_chunk_size: int = 1000, overlap_size: int = 200) -> List[str]:
    """Split *text_blocks* into overlapping windows.

    The blocks are joined with a blank line, then a window of
    ``max_chunk_size`` characters advances by ``max_chunk_size - overlap_size``
    until it reaches the end of the text. Windows are trimmed and
    whitespace-only windows are dropped.
    """

    config = ChunkingConfig(chunk_chars=max_chunk_size, overlap_chars=overlap_size)
    return SlidingWindowChunker(config).chunk(text_blocks)
